"""
Payment lifecycle events.

Listeners subscribe per event type and are called synchronously, in
registration order, on the thread that detected the transition.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from .models import OnChainState, PaymentRequest

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]


class EventType(str, Enum):
    CREATED = "created"
    STATE_CHANGED = "state_changed"
    FUNDS_LOCKED = "funds_locked"
    RESULT_SUBMITTED = "result_submitted"
    COMPLETED = "completed"
    REFUND_AUTHORIZED = "refund_authorized"
    MONITOR_ERROR = "monitor_error"


@dataclass(frozen=True)
class StateChange:
    blockchain_identifier: str
    previous_state: Optional[OnChainState]
    new_state: Optional[OnChainState]
    payment: PaymentRequest


@dataclass(frozen=True)
class ResultSubmitted:
    blockchain_identifier: str
    result_hash: str


@dataclass(frozen=True)
class RefundAuthorized:
    blockchain_identifier: str


@dataclass(frozen=True)
class MonitorError:
    blockchain_identifier: str
    error: BaseException


class EventEmitter:
    """In-process publish/subscribe registry."""

    def __init__(self):
        self._listeners: dict[EventType, list[Listener]] = {}
        self._lock = threading.Lock()

    def on(self, event: EventType | str, listener: Listener) -> Listener:
        event = EventType(event)
        with self._lock:
            self._listeners.setdefault(event, []).append(listener)
        return listener

    def off(self, event: EventType | str, listener: Listener) -> bool:
        event = EventType(event)
        with self._lock:
            registered = self._listeners.get(event, [])
            if listener not in registered:
                return False
            registered.remove(listener)
            return True

    def listeners(self, event: EventType | str) -> list[Listener]:
        with self._lock:
            return list(self._listeners.get(EventType(event), []))

    def remove_all_listeners(self) -> None:
        with self._lock:
            self._listeners.clear()

    def emit(self, event: EventType, payload: Any) -> int:
        """Deliver *payload* to every current listener; returns how many ran."""
        delivered = 0
        for listener in self.listeners(event):
            try:
                listener(payload)
            except Exception:
                logger.exception("Listener for %s raised", event.value)
                continue
            delivered += 1
        return delivered
