"""Last-known-good snapshot per domain, merged from pulls and push events.

Pulls are periodic polls that can be slow; pushes carry the remote side's most
recent change. A pull result is only accepted when no push has been accepted
since the pull was issued, which is tracked with a per-cache push counter
captured into a ``PullTicket`` at issue time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Absent:
    _instance: "_Absent | None" = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()


@dataclass(frozen=True)
class PullTicket:
    domain: str
    push_seq: int


class DomainCache(Generic[T]):
    """Single authoritative value for one domain."""

    def __init__(self, name: str):
        self.name = name
        self._value: T | _Absent = ABSENT
        self._push_seq = 0
        self._last_applied_seq = 0
        self._listeners: list[Callable[[str, T], None]] = []

    @property
    def value(self) -> T | _Absent:
        return self._value

    @property
    def has_value(self) -> bool:
        return self._value is not ABSENT

    @property
    def push_seq(self) -> int:
        return self._push_seq

    @property
    def last_applied_seq(self) -> int:
        return self._last_applied_seq

    def add_listener(self, callback: Callable[[str, T], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def begin_pull(self) -> PullTicket:
        return PullTicket(domain=self.name, push_seq=self._push_seq)

    def on_pull_result(self, value: T, ticket: PullTicket) -> bool:
        """Apply a completed pull. Returns False when the result is stale."""
        if ticket.push_seq != self._push_seq:
            logger.debug(
                "Discarding stale %s pull (issued at push_seq=%d, now %d)",
                self.name, ticket.push_seq, self._push_seq,
            )
            return False
        self._apply(value)
        return True

    def on_push_event(self, value: T) -> bool:
        """Apply a push. Pushes are always accepted."""
        self._push_seq += 1
        self._apply(value)
        return True

    def on_pull_failure(self, ticket: PullTicket, exc: BaseException) -> None:
        logger.warning("%s pull failed (push_seq=%d): %s", self.name, ticket.push_seq, exc)

    async def pull(self, fetch: Callable[[], Awaitable[T]]) -> bool:
        """Issue a pull through ``fetch`` and merge its result.

        Transport errors propagate to the caller after being recorded; the
        cached value is left untouched.
        """
        ticket = self.begin_pull()
        try:
            value = await fetch()
        except Exception as e:
            self.on_pull_failure(ticket, e)
            raise
        return self.on_pull_result(value, ticket)

    def _apply(self, value: T) -> None:
        self._last_applied_seq += 1
        if self._value is not ABSENT and self._value == value:
            return
        self._value = value
        for listener in list(self._listeners):
            try:
                listener(self.name, value)
            except Exception:
                logger.exception("%s listener failed", self.name)
