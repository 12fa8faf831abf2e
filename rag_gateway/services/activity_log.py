"""Bounded in-memory activity log surfaced by the status endpoint."""

import logging
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass(frozen=True)
class ActivityEntry:
    timestamp: float
    level: str
    message: str
    session_id: Optional[str] = None
    tenant_id: Optional[str] = None
    tool: Optional[str] = None

    def to_status(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat()
        return data


class ActivityLog:
    """Ring buffer of recent gateway events; oldest entries are dropped first."""

    def __init__(self, max_entries: int = 200):
        self._entries: Deque[ActivityEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def add(
        self,
        message: str,
        level: str = "info",
        session_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        tool: Optional[str] = None,
    ) -> ActivityEntry:
        entry = ActivityEntry(
            timestamp=time.time(),
            level=level,
            message=message,
            session_id=session_id,
            tenant_id=tenant_id,
            tool=tool,
        )
        with self._lock:
            self._entries.append(entry)
        logger.log(
            _LEVELS.get(level, logging.INFO),
            message,
            extra={"session_id": session_id, "tenant_id": tenant_id, "tool": tool},
        )
        return entry

    def entries(self, tenant_id: Optional[str] = None, limit: Optional[int] = None) -> List[ActivityEntry]:
        """
        Entries newest first.

        Args:
            tenant_id: Only this tenant's entries; None returns everything
            limit: Maximum number of entries
        """
        with self._lock:
            snapshot = list(self._entries)
        snapshot.reverse()
        if tenant_id is not None:
            snapshot = [e for e in snapshot if e.tenant_id == tenant_id]
        return snapshot[:limit] if limit else snapshot

    def clear(self, tenant_id: Optional[str] = None) -> int:
        """Drop entries (one tenant's, or all). Returns how many were removed."""
        with self._lock:
            before = len(self._entries)
            if tenant_id is None:
                self._entries.clear()
                return before
            kept = [e for e in self._entries if e.tenant_id != tenant_id]
            self._entries.clear()
            self._entries.extend(kept)
            return before - len(kept)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
