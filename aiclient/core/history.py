# aiclient/core/history.py
from __future__ import annotations
import threading
from collections import deque
from typing import Deque, List, Optional

from aiclient.infra.llm.base import ChatMessage


class ConversationHistory:
    """
    Ordered log of conversation turns for one chat session. Only grows or is
    cleared as a whole; request assembly reads a trailing window of it.
    Raw storage is unbounded unless `max_size` is given.
    """

    def __init__(self, max_size: Optional[int] = None):
        if max_size is not None and max_size < 1:
            raise ValueError("max_size must be positive")
        self._items: Deque[ChatMessage] = deque(maxlen=max_size)
        self._lock = threading.RLock()

    def append(self, message: ChatMessage) -> None:
        with self._lock:
            self._items.append(message)

    def windowed_view(self, limit: int) -> List[ChatMessage]:
        if limit <= 0:
            return []
        with self._lock:
            size = len(self._items)
            start = max(0, size - limit)
            return [self._items[i] for i in range(start, size)]

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def snapshot(self) -> List[ChatMessage]:
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
