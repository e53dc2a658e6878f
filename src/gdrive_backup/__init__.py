"""Google Drive backup sync engine."""

__version__ = "0.1.0"
