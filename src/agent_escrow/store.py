"""In-memory payment store keyed by blockchain identifier."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from .models import PaymentRequest


class PaymentStore:
    """Authoritative cache of known payment requests.

    Entries are replaced wholesale on every write (last write wins) and only
    leave the store through ``cleanup_terminal`` or ``clear``.
    """

    def __init__(self):
        self._payments: dict[str, PaymentRequest] = {}
        self._mutex = threading.Lock()

    @contextmanager
    def _lock(self) -> Iterator[None]:
        with self._mutex:
            yield

    def put(self, payment: PaymentRequest) -> Optional[PaymentRequest]:
        """Insert or replace an entry, returning the one it replaced."""
        with self._lock():
            previous = self._payments.get(payment.blockchain_identifier)
            self._payments[payment.blockchain_identifier] = payment
            return previous

    def get(self, blockchain_identifier: str) -> Optional[PaymentRequest]:
        with self._lock():
            return self._payments.get(blockchain_identifier)

    def snapshot(self) -> dict[str, PaymentRequest]:
        with self._lock():
            return dict(self._payments)

    def non_terminal(self) -> list[PaymentRequest]:
        """Entries still eligible for polling."""
        with self._lock():
            return [p for p in self._payments.values() if not p.is_terminal]

    def cleanup_terminal(self) -> int:
        """Drop entries in a terminal state; returns how many were removed."""
        with self._lock():
            terminal = [key for key, p in self._payments.items() if p.is_terminal]
            for key in terminal:
                del self._payments[key]
            return len(terminal)

    def clear(self) -> None:
        with self._lock():
            self._payments.clear()

    def __contains__(self, blockchain_identifier: object) -> bool:
        with self._lock():
            return blockchain_identifier in self._payments

    def __len__(self) -> int:
        with self._lock():
            return len(self._payments)
