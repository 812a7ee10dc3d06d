"""Shared utility functions for the AC Whisk identity core.

Convenience re-exports so consumers can ``from acwhisk.utils import
log_audit_event``.
"""

from acwhisk.utils.audit import AuditEvent, log_audit_event

__all__ = [
    "AuditEvent",
    "log_audit_event",
]
