"""Live MCP sessions over the HTTP+SSE transport."""

import asyncio
import json
import logging
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Deque, Dict, List, Optional

from rag_gateway.infra.metrics import GatewayMetrics
from rag_gateway.models.session import SessionRecord, SessionState, iso_timestamp
from rag_gateway.services.activity_log import ActivityLog

logger = logging.getLogger(__name__)

MESSAGES_PATH = "/messages"
KEEPALIVE = ": keepalive\n\n"

_CLOSE = object()


def format_sse(event: str, data: str) -> str:
    """Format one server-sent event."""
    lines = "".join(f"data: {line}\n" for line in data.split("\n"))
    return f"event: {event}\n{lines}\n"


class SessionTransport:
    """
    Push side of one session: a queue drained by the SSE response generator.

    The generator sends the `endpoint` event first, then queued JSON-RPC
    messages, and a keepalive comment whenever the queue stays empty for
    `heartbeat_interval` seconds.
    """

    def __init__(self, session_id: str, heartbeat_interval: float = 15.0):
        self.session_id = session_id
        self.heartbeat_interval = heartbeat_interval
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    @property
    def endpoint_url(self) -> str:
        return f"{MESSAGES_PATH}?sessionId={self.session_id}"

    def send(self, message: Dict[str, Any]) -> bool:
        """Queue a message for the client. Returns False if the stream is gone."""
        if self.closed:
            return False
        self._queue.put_nowait(message)
        return True

    def close(self) -> None:
        """Ask the stream to finish. Safe to call repeatedly."""
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(_CLOSE)

    async def events(self, on_close: Callable[[str], Any]) -> AsyncIterator[str]:
        """
        Yield SSE frames until the session closes.

        `on_close(reason)` runs exactly once when the generator ends, whether
        it finished, was cancelled by a client disconnect, or failed to write
        a heartbeat.
        """
        reason = "disconnect"
        try:
            yield format_sse("endpoint", self.endpoint_url)
            while True:
                try:
                    item = await asyncio.wait_for(self._queue.get(), timeout=self.heartbeat_interval)
                except asyncio.TimeoutError:
                    reason = "heartbeat"
                    yield KEEPALIVE
                    reason = "disconnect"
                    continue
                if item is _CLOSE:
                    reason = "explicit"
                    break
                yield format_sse("message", json.dumps(item))
        finally:
            self.closed = True
            on_close(reason)


@dataclass
class Session:
    """One live streaming connection bound to one tenant."""
    session_id: str
    tenant_id: Optional[str]
    credential: str
    created_at: float
    transport: SessionTransport = field(repr=False)
    state: SessionState = SessionState.PENDING_AUTH

    def to_status(self, mask: Callable[[str], str]) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "tenantId": self.tenant_id,
            "credential": mask(self.credential),
            "state": self.state.value,
            "establishedAt": iso_timestamp(self.created_at),
            "ageSeconds": round(time.time() - self.created_at, 1),
        }


class SessionManager:
    """
    Owner of the live session map.

    The map is the one structure every request touches; the lock guards
    dict operations only and is never held across I/O.
    """

    def __init__(
        self,
        heartbeat_interval: float = 15.0,
        history_size: int = 50,
        metrics: Optional[GatewayMetrics] = None,
        activity_log: Optional[ActivityLog] = None,
    ):
        self.heartbeat_interval = heartbeat_interval
        self.metrics = metrics
        self.activity_log = activity_log
        self._sessions: Dict[str, Session] = {}
        self._history: Deque[SessionRecord] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    def open_session(self, tenant_id: Optional[str], credential: str) -> Session:
        """Create the transport and register an ESTABLISHED session in one step."""
        session_id = str(uuid.uuid4())
        session = Session(
            session_id=session_id,
            tenant_id=tenant_id,
            credential=credential,
            created_at=time.time(),
            transport=SessionTransport(session_id, self.heartbeat_interval),
        )
        with self._lock:
            session.state = SessionState.ESTABLISHED
            self._sessions[session_id] = session

        if self.metrics:
            self.metrics.sessions_opened.inc()
            self.metrics.active_sessions.inc()
        if self.activity_log:
            self.activity_log.add(
                f"SSE connected (tenant: {tenant_id or 'open-mode'})",
                session_id=session_id,
                tenant_id=tenant_id,
            )
        return session

    def get(self, session_id: Optional[str]) -> Optional[Session]:
        if not session_id:
            return None
        with self._lock:
            return self._sessions.get(session_id)

    def stream(self, session: Session) -> AsyncIterator[str]:
        """SSE frame generator for a session; ending it closes the session."""
        return session.transport.events(lambda reason: self.close(session.session_id, reason))

    def close(self, session_id: str, reason: str = "explicit") -> bool:
        """
        Close a session. Idempotent.

        Returns:
            True if this call closed it, False if it was already gone
        """
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                return False
            session.state = SessionState.CLOSED
            closed_at = time.time()
            self._history.append(
                SessionRecord(
                    session_id=session_id,
                    tenant_id=session.tenant_id,
                    established_at=session.created_at,
                    closed_at=closed_at,
                    close_reason=reason,
                )
            )

        session.transport.close()
        if self.metrics:
            self.metrics.active_sessions.dec()
            self.metrics.sessions_closed.labels(reason=reason).inc()
        if self.activity_log:
            self.activity_log.add(
                f"SSE closed ({reason}) after {closed_at - session.created_at:.1f}s",
                session_id=session_id,
                tenant_id=session.tenant_id,
            )
        return True

    def close_all(self, reason: str = "shutdown") -> int:
        with self._lock:
            session_ids = list(self._sessions)
        return sum(1 for session_id in session_ids if self.close(session_id, reason))

    def list_sessions(self, tenant_id: Optional[str] = None) -> List[Session]:
        """Live sessions, optionally only one tenant's."""
        with self._lock:
            sessions = list(self._sessions.values())
        if tenant_id is not None:
            sessions = [s for s in sessions if s.tenant_id == tenant_id]
        return sessions

    def history(self, tenant_id: Optional[str] = None) -> List[SessionRecord]:
        """Closed-session records, newest first."""
        with self._lock:
            records = list(self._history)
        records.reverse()
        if tenant_id is not None:
            records = [r for r in records if r.tenant_id == tenant_id]
        return records

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
