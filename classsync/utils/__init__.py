"""Shared utilities for the ClassSync core."""

from classsync.utils.audit import AuditEvent, log_audit_event

__all__ = ["AuditEvent", "log_audit_event"]
