"""会话记忆 — 每个连接最近几条绘画指令，避免重复。"""

from __future__ import annotations

import logging
from collections import deque

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 3


class ConversationMemory:
    """按 connection_id 保存最近 max_items 条指令（最新在后）。

    只存在于进程内存中，断开连接时由连接管理层 clear。
    """

    def __init__(self, max_items: int = DEFAULT_HISTORY_SIZE) -> None:
        if max_items < 1:
            raise ValueError("max_items must be >= 1")
        self.max_items = max_items
        self._entries: dict[str, deque[str]] = {}

    def get(self, connection_id: str) -> list[str]:
        """返回历史快照（拷贝），没有记录时为空列表。"""
        entry = self._entries.get(connection_id)
        return list(entry) if entry else []

    def append(self, connection_id: str, text: str) -> None:
        """追加最新一条，超过上限时淘汰最旧的。"""
        entry = self._entries.get(connection_id)
        if entry is None:
            entry = deque(maxlen=self.max_items)
            self._entries[connection_id] = entry
        entry.append(text)

    def clear(self, connection_id: str) -> None:
        """清空该连接的历史，可重复调用。"""
        if self._entries.pop(connection_id, None) is not None:
            logger.debug("Conversation memory cleared for %s", connection_id)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
