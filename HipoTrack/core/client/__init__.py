"""
Client module for HipoTrack.
Provides the messaging client and the audit log service.
"""

from .audit import AuditEvent, AuditLogService, AuditQuery
from .messaging import MessagingClient

__all__ = [
    'AuditEvent', 'AuditLogService', 'AuditQuery',
    'MessagingClient',
]
