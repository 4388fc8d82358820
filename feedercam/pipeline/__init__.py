"""Folder scan orchestration."""
