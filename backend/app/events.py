"""
In-process notification bus.

Business operations publish after their transaction commits; consumers (the
reporting worker) drain the queue on their own thread. Publishing is
fire-and-forget: it never blocks the request and never raises, a full or
closed bus drops the notification and logs it.
"""
from __future__ import annotations

import json
import queue
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .config import settings

GRN_COMPLETED = "GRN_COMPLETED"


def _json_log(level: str, event: str, **fields):
    rec = {"ts": datetime.now(timezone.utc).isoformat(), "level": level, "event": event, **fields}
    print(json.dumps(rec, default=str), file=sys.stderr)


@dataclass(frozen=True)
class Notification:
    event_type: str
    payload: dict[str, Any]
    published_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationBus:
    def __init__(self, maxsize: int = 1000):
        self._q: "queue.Queue[Notification]" = queue.Queue(maxsize=max(1, int(maxsize)))
        self._closed = threading.Event()
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def publish(self, event_type: str, payload: Optional[dict] = None) -> bool:
        n = Notification(event_type=event_type, payload=dict(payload or {}))
        if self._closed.is_set():
            self.dropped += 1
            _json_log("warning", "notify.dropped", reason="closed", event_type=event_type, payload=n.payload)
            return False
        try:
            self._q.put_nowait(n)
        except queue.Full:
            self.dropped += 1
            _json_log("warning", "notify.dropped", reason="full", event_type=event_type, payload=n.payload)
            return False
        return True

    def get(self, timeout: Optional[float] = None) -> Optional[Notification]:
        try:
            if timeout is None:
                return self._q.get_nowait()
            return self._q.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[Notification]:
        out = []
        while True:
            n = self.get()
            if n is None:
                return out
            out.append(n)

    def pending(self) -> int:
        return self._q.qsize()

    def close(self) -> None:
        self._closed.set()


notifications = NotificationBus(settings.notify_queue_max)
