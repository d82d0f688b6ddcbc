"""Audit store errors."""


class AuditStoreError(Exception):
    """Base exception for audit store operations."""
