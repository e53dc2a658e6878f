"""Backup and restore run orchestration."""
