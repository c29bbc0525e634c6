"""
Audit log service.

Records security-relevant actions (document downloads, profile updates,
message sends, blocked logins) and lets the security dashboard page
through them or follow new ones live. Without a backend the log is kept
in memory, newest first.
"""
import logging
import platform
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from HipoTrack import __version__
from HipoTrack.api.interfaces import MessagingBackend, Row, Unsubscribe
from HipoTrack.core.client.messaging.models.data import parse_timestamp, utcnow
from HipoTrack.core.client.utils.constants import AUDIT_EVENTS_TABLE, AUDIT_MEMORY_LIMIT

logger = logging.getLogger(__name__)

USER_AGENT = f"HipoTrack/{__version__} Python/{platform.python_version()}"


class AuditStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    BLOCKED = "blocked"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def _coerce(enum_cls, value, default):
    try:
        return enum_cls(value)
    except ValueError:
        return default


def _pick(record: Dict[str, Any], snake: str, camel: str, default=None):
    value = record.get(snake)
    if value is None:
        value = record.get(camel)
    return default if value is None else value


@dataclass(frozen=True)
class AuditEvent:
    """One entry of the audit log."""
    id: str
    timestamp: datetime
    user_id: str
    user_name: str
    user_role: str
    action: str
    resource: str
    resource_id: Optional[str] = None
    ip_address: str = "unknown"
    user_agent: str = USER_AGENT
    status: AuditStatus = AuditStatus.SUCCESS
    risk_level: RiskLevel = RiskLevel.LOW
    details: Optional[str] = None
    location: Optional[str] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'AuditEvent':
        """Build an event from a row; snake_case and camelCase keys are both accepted."""
        timestamp = record.get("timestamp")
        return cls(
            id=str(record.get("id") or uuid.uuid4()),
            timestamp=parse_timestamp(timestamp) if timestamp else utcnow(),
            user_id=str(_pick(record, "user_id", "userId", "unknown")),
            user_name=str(_pick(record, "user_name", "userName", "Unknown User")),
            user_role=str(_pick(record, "user_role", "userRole", "unknown")),
            action=str(record.get("action") or "unknown_action"),
            resource=str(record.get("resource") or "unknown_resource"),
            resource_id=_pick(record, "resource_id", "resourceId"),
            ip_address=str(_pick(record, "ip_address", "ipAddress", "unknown")),
            user_agent=str(_pick(record, "user_agent", "userAgent", USER_AGENT)),
            status=_coerce(AuditStatus, record.get("status") or "success", AuditStatus.SUCCESS),
            risk_level=_coerce(RiskLevel, _pick(record, "risk_level", "riskLevel", "low"), RiskLevel.LOW),
            details=record.get("details"),
            location=record.get("location"),
        )

    def to_row(self) -> Row:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "user_id": self.user_id,
            "user_name": self.user_name,
            "user_role": self.user_role,
            "action": self.action,
            "resource": self.resource,
            "resource_id": self.resource_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "status": self.status.value,
            "risk_level": self.risk_level.value,
            "details": self.details,
            "location": self.location,
        }


@dataclass
class AuditQuery:
    """Filters and page selection for the audit log."""
    page: int = 1
    page_size: int = 20
    search: Optional[str] = None
    status: Optional[AuditStatus] = None
    risk_level: Optional[RiskLevel] = None
    user_role: Optional[str] = None
    user_id: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    @property
    def offset(self) -> int:
        return (max(self.page, 1) - 1) * self.page_size

    def to_filters(self) -> Row:
        """Non-empty filters as plain values, for backend queries."""
        filters = {
            "search": self.search,
            "status": self.status.value if self.status else None,
            "risk_level": self.risk_level.value if self.risk_level else None,
            "user_role": self.user_role,
            "user_id": self.user_id,
            "date_from": self.date_from.isoformat() if self.date_from else None,
            "date_to": self.date_to.isoformat() if self.date_to else None,
        }
        return {key: value for key, value in filters.items() if value}


@dataclass
class AuditPage:
    events: List[AuditEvent] = field(default_factory=list)
    total: int = 0


def _matches(event: AuditEvent, query: AuditQuery) -> bool:
    if query.status and event.status != query.status:
        return False
    if query.risk_level and event.risk_level != query.risk_level:
        return False
    if query.user_role and event.user_role != query.user_role:
        return False
    if query.user_id and event.user_id != query.user_id:
        return False
    if query.date_from and event.timestamp < query.date_from:
        return False
    if query.date_to and event.timestamp > query.date_to:
        return False
    if query.search:
        haystack = " ".join([
            event.user_name,
            event.action,
            event.resource,
            event.ip_address,
            event.details or "",
            event.location or "",
        ]).lower()
        if query.search.lower() not in haystack:
            return False
    return True


def apply_query_filters(events: Iterable[AuditEvent], query: AuditQuery) -> List[AuditEvent]:
    """Events matching the query, newest first."""
    return sorted(
        (event for event in events if _matches(event, query)),
        key=lambda event: event.timestamp,
        reverse=True,
    )


AuditListener = Callable[[AuditEvent], None]


class AuditLogService:
    """Writes, pages through and follows audit events."""

    def __init__(self, backend: Optional[MessagingBackend] = None, memory_limit: int = AUDIT_MEMORY_LIMIT):
        self._backend = backend
        self._memory_limit = memory_limit
        self._events: Tuple[AuditEvent, ...] = ()
        self._listeners: List[Tuple[AuditListener, Optional[Sequence[RiskLevel]]]] = []

    async def log_event(
        self,
        action: str,
        resource: str,
        resource_id: Optional[str] = None,
        user_id: Optional[str] = None,
        user_name: Optional[str] = None,
        user_role: Optional[str] = None,
        status: str = AuditStatus.SUCCESS,
        risk_level: str = RiskLevel.LOW,
        details: Optional[str] = None,
        ip_address: Optional[str] = None,
        location: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> AuditEvent:
        """Record an event and return it as stored."""
        event = AuditEvent(
            id=str(uuid.uuid4()),
            timestamp=timestamp or utcnow(),
            user_id=user_id or "unknown",
            user_name=user_name or "Unknown User",
            user_role=user_role or "unknown",
            action=action,
            resource=resource,
            resource_id=resource_id,
            ip_address=ip_address or "unknown",
            status=AuditStatus(status),
            risk_level=RiskLevel(risk_level),
            details=details,
            location=location,
        )

        if self._backend is not None:
            row = await self._backend.insert_audit_event(event.to_row())
            return AuditEvent.from_record(row) if row else event

        self._events = ((event,) + self._events)[:self._memory_limit]
        self._notify(event)
        return event

    async def fetch_logs(self, query: AuditQuery) -> AuditPage:
        """One page of events matching the query, plus the total match count."""
        if self._backend is not None:
            rows, total = await self._backend.list_audit_events(query.to_filters(), query.offset, query.page_size)
            return AuditPage(events=[AuditEvent.from_record(row) for row in rows], total=total)

        matching = apply_query_filters(self._events, query)
        return AuditPage(
            events=matching[query.offset:query.offset + query.page_size],
            total=len(matching),
        )

    async def subscribe(
        self,
        on_insert: AuditListener,
        risk_levels: Optional[Sequence[RiskLevel]] = None,
    ) -> Unsubscribe:
        """Call ``on_insert`` for each new event, optionally only for some risk levels."""
        if self._backend is not None:
            def handle(row: Row) -> None:
                event = AuditEvent.from_record(row)
                if not risk_levels or event.risk_level in risk_levels:
                    on_insert(event)

            return await self._backend.subscribe_to_inserts(AUDIT_EVENTS_TABLE, handle)

        entry = (on_insert, risk_levels)
        self._listeners.append(entry)

        async def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def _notify(self, event: AuditEvent) -> None:
        for listener, risk_levels in list(self._listeners):
            if risk_levels and event.risk_level not in risk_levels:
                continue
            try:
                listener(event)
            except Exception:
                logger.exception("Audit listener failed for event %s", event.id)
