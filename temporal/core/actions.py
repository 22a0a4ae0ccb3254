"""
Registry of one-shot timer actions, keyed by opaque tokens.

Timer state only ever records the token. Actions are re-bound by token
when a snapshot is restored, so the callables never need to serialize.
"""

import logging
import threading
from typing import Any, Callable

from temporal.core.errors import InvalidArgument

logger = logging.getLogger(__name__)


class ActionRegistry:
    """Thread-safe token -> callable map."""

    def __init__(self) -> None:
        self._actions: dict[str, Callable[[], Any]] = {}
        self._lock = threading.Lock()
        self._counter = 0

    def register(self, action: Callable[[], Any], token: str | None = None) -> str:
        """Bind action to token (generated when omitted). Returns the token."""
        if not callable(action):
            raise InvalidArgument(f"Action must be callable, got {action!r}")
        with self._lock:
            if token is None:
                self._counter += 1
                name = getattr(action, "__qualname__", type(action).__name__)
                token = f"{name}#{self._counter}"
            existing = self._actions.get(token)
            if existing is not None and existing is not action:
                logger.info(f"Action token '{token}' re-bound")
            self._actions[token] = action
        return token

    def resolve(self, token: str | None) -> Callable[[], Any] | None:
        if token is None:
            return None
        with self._lock:
            return self._actions.get(token)

    def unregister(self, token: str) -> None:
        """Remove a token. Raises KeyError if not found."""
        with self._lock:
            if token not in self._actions:
                raise KeyError(f"Action token {token} not found")
            del self._actions[token]

    def __contains__(self, token: object) -> bool:
        with self._lock:
            return token in self._actions

    @property
    def tokens(self) -> list[str]:
        with self._lock:
            return list(self._actions)
