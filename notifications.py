import time
from dataclasses import dataclass
from typing import Callable, List, Optional

import structlog

logger = structlog.get_logger(__name__)

NOTIFICATION_SECONDS = 3.0

ICONS = {"success": "✓", "error": "✕", "info": "ℹ"}


@dataclass
class Notification:
    message: str
    kind: str
    shown_at: float

    @property
    def icon(self) -> str:
        return ICONS.get(self.kind, ICONS["info"])


class Notifier:
    """
    Transient user-facing messages. Showing a new message replaces the one on
    screen; a message disappears after NOTIFICATION_SECONDS.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, duration: float = NOTIFICATION_SECONDS):
        self.clock = clock
        self.duration = duration
        self.history: List[Notification] = []
        self._active: Optional[Notification] = None

    def show(self, message: str, kind: str = "info") -> Notification:
        note = Notification(message=message, kind=kind, shown_at=self.clock())
        self._active = note
        self.history.append(note)
        logger.info("notification", message=message, kind=kind)
        return note

    def dismiss(self) -> None:
        self._active = None

    @property
    def current(self) -> Optional[Notification]:
        if self._active and self.clock() - self._active.shown_at >= self.duration:
            self._active = None
        return self._active
