import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from itertools import count
from typing import Callable, Deque, List, Optional

_ids = count(1)

DEFAULT_TTL_SECONDS = 4.0
DEFAULT_MAX_ACTIVE = 5


class NotificationKind(str, Enum):
    info = "info"
    success = "success"
    error = "error"


@dataclass
class Notification:
    message: str
    kind: NotificationKind = NotificationKind.info
    retryable: bool = False
    order_id: Optional[int] = None
    created_at: float = 0.0
    id: int = field(default_factory=lambda: next(_ids))


Listener = Callable[[Notification], None]


class Notifier:
    """
    Transient, dismissible notifications shown to the buyer.

    A notification expires ``ttl_seconds`` after it was raised and at most
    ``max_active`` are kept; the oldest is dropped first. Listeners are
    called synchronously for every new notification.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_active: int = DEFAULT_MAX_ACTIVE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._active: Deque[Notification] = deque(maxlen=max_active)
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def notify(
        self,
        message: str,
        kind: NotificationKind = NotificationKind.info,
        retryable: bool = False,
        order_id: Optional[int] = None,
    ) -> Notification:
        notification = Notification(
            message=message,
            kind=kind,
            retryable=retryable,
            order_id=order_id,
            created_at=self._clock(),
        )
        self._expire()
        self._active.append(notification)
        for listener in list(self._listeners):
            listener(notification)
        return notification

    def info(self, message: str, **kwargs) -> Notification:
        return self.notify(message, NotificationKind.info, **kwargs)

    def success(self, message: str, **kwargs) -> Notification:
        return self.notify(message, NotificationKind.success, **kwargs)

    def error(self, message: str, **kwargs) -> Notification:
        return self.notify(message, NotificationKind.error, **kwargs)

    def dismiss(self, notification: Notification) -> None:
        if notification in self._active:
            self._active.remove(notification)

    def _expire(self) -> None:
        deadline = self._clock() - self._ttl
        while self._active and self._active[0].created_at <= deadline:
            self._active.popleft()

    @property
    def active(self) -> List[Notification]:
        self._expire()
        return list(self._active)

    @property
    def latest(self) -> Optional[Notification]:
        self._expire()
        return self._active[-1] if self._active else None
