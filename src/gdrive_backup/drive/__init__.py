"""Google Drive REST client, token lifecycle and transfer engines."""
