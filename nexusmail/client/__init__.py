"""Protocol adapters, MIME decoding and provider presets."""
