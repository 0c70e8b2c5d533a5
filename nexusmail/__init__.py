"""
nexusmail: IMAP mailbox mirroring with a forgiving MIME/charset decoder.
"""

from __future__ import annotations

__version__ = "0.1.0"
