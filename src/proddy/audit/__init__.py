"""Audit trail for external tool invocations."""

from proddy.audit.recorder import AuditEventInput, AuditRecorder
from proddy.audit.sanitize import parse_and_sanitize_arguments, sanitize_audit_payload

__all__ = [
    "AuditEventInput",
    "AuditRecorder",
    "parse_and_sanitize_arguments",
    "sanitize_audit_payload",
]
