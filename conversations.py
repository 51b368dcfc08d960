"""Client-side conversation store.

Conversations live in a small key/value file that plays the role of the
browser's localStorage: one key for the serialized conversation list, one
for the theme and one for the install-prompt dismissal time.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import orjson

logger = logging.getLogger("amica.store")

CONVERSATIONS_KEY = "amica-conversations"
THEME_KEY = "amica-theme"
INSTALL_DISMISSED_KEY = "amica-install-dismissed"

DEFAULT_TITLE = "Nuova conversazione"
TITLE_CHARS = 30
INSTALL_SNOOZE_DAYS = 7


def _now() -> datetime:
    return datetime.now(timezone.utc)


def generate_id() -> str:
    return secrets.token_hex(6)


def _parse_ts(value: Any) -> datetime:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def title_from(text: str) -> str:
    t = text.strip()
    return t[:TITLE_CHARS] + ("..." if len(t) > TITLE_CHARS else "")


@dataclass(frozen=True)
class Message:
    role: str
    content: str
    id: str = field(default_factory=generate_id)
    timestamp: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            id=str(data["id"]),
            role=data["role"],
            content=data["content"],
            timestamp=_parse_ts(data["timestamp"]),
        )


@dataclass
class Conversation:
    id: str = field(default_factory=generate_id)
    title: str = DEFAULT_TITLE
    messages: List[Message] = field(default_factory=list)
    conversation_summary: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "messages": [m.to_dict() for m in self.messages],
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        if self.conversation_summary:
            data["conversationSummary"] = self.conversation_summary
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Conversation":
        return cls(
            id=str(data["id"]),
            title=data.get("title") or DEFAULT_TITLE,
            messages=[Message.from_dict(m) for m in data.get("messages", [])],
            conversation_summary=data.get("conversationSummary") or None,
            created_at=_parse_ts(data["createdAt"]),
            updated_at=_parse_ts(data["updatedAt"]),
        )

    def api_messages(self) -> List[Dict[str, str]]:
        return [{"role": m.role, "content": m.content} for m in self.messages]


class LocalStorage:
    """String key/value pairs persisted as one JSON file, rewritten on every write."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._items: Dict[str, str] = {}
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            self._items = {}
            return
        try:
            data = orjson.loads(self.path.read_bytes())
        except (OSError, orjson.JSONDecodeError) as e:
            logger.error("could not read storage %s: %s", self.path, e)
            self._items = {}
            return
        if isinstance(data, dict):
            self._items = {str(k): str(v) for k, v in data.items()}
        else:
            self._items = {}

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(orjson.dumps(self._items, option=orjson.OPT_INDENT_2))

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value
        self._save()

    def remove_item(self, key: str) -> None:
        if self._items.pop(key, None) is not None:
            self._save()


class ConversationStore:
    """
    Owns every conversation and which one is current.
    Each mutation is written through to storage right away.
    """

    def __init__(self, storage: LocalStorage) -> None:
        self.storage = storage
        self._conversations: List[Conversation] = []
        self.current_id: Optional[str] = None
        self._load()

    # ——— persistence
    def _load(self) -> None:
        raw = self.storage.get_item(CONVERSATIONS_KEY)
        if not raw:
            return
        try:
            parsed = orjson.loads(raw)
            self._conversations = [Conversation.from_dict(c) for c in parsed]
        except (orjson.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.error("Error loading conversations: %s", e)
            self._conversations = []
        if self._conversations:
            self.current_id = self._conversations[0].id

    def save(self) -> None:
        blob = orjson.dumps([c.to_dict() for c in self._conversations])
        self.storage.set_item(CONVERSATIONS_KEY, blob.decode("utf-8"))

    # ——— queries
    @property
    def conversations(self) -> List[Conversation]:
        return list(self._conversations)

    @property
    def current(self) -> Optional[Conversation]:
        return self.get(self.current_id) if self.current_id else None

    def get(self, conversation_id: str) -> Optional[Conversation]:
        for c in self._conversations:
            if c.id == conversation_id:
                return c
        return None

    def _require(self, conversation_id: str) -> Conversation:
        conv = self.get(conversation_id)
        if conv is None:
            raise KeyError(f"unknown conversation {conversation_id!r}")
        return conv

    # ——— mutations
    def create(self, title: Optional[str] = None) -> Conversation:
        conv = Conversation(title=title or DEFAULT_TITLE)
        self._conversations.insert(0, conv)
        self.current_id = conv.id
        self.save()
        return conv

    def select(self, conversation_id: str) -> Conversation:
        conv = self._require(conversation_id)
        self.current_id = conv.id
        return conv

    def delete(self, conversation_id: str) -> None:
        self._require(conversation_id)
        self._conversations = [c for c in self._conversations if c.id != conversation_id]
        if self.current_id == conversation_id:
            self.current_id = self._conversations[0].id if self._conversations else None
        self.save()

    def append(self, conversation_id: str, role: str, content: str) -> Message:
        if role not in ("user", "assistant"):
            raise ValueError(f"invalid role {role!r}")
        conv = self._require(conversation_id)
        message = Message(role=role, content=content)
        if role == "user" and not conv.messages:
            conv.title = title_from(content)
        conv.messages.append(message)
        conv.updated_at = message.timestamp
        self.save()
        return message

    def set_summary(self, conversation_id: str, summary: Optional[str]) -> None:
        conv = self._require(conversation_id)
        conv.conversation_summary = summary or None
        conv.updated_at = _now()
        self.save()


class Preferences:
    """Theme and install-prompt snooze, kept next to the conversations."""

    def __init__(self, storage: LocalStorage) -> None:
        self.storage = storage

    @property
    def theme(self) -> str:
        return "dark" if self.storage.get_item(THEME_KEY) == "dark" else "light"

    @theme.setter
    def theme(self, value: str) -> None:
        if value not in ("light", "dark"):
            raise ValueError(f"invalid theme {value!r}")
        self.storage.set_item(THEME_KEY, value)

    def dismiss_install_prompt(self, now_ms: Optional[int] = None) -> None:
        now_ms = int(time.time() * 1000) if now_ms is None else now_ms
        self.storage.set_item(INSTALL_DISMISSED_KEY, str(now_ms))

    def should_offer_install(self, now_ms: Optional[int] = None) -> bool:
        raw = self.storage.get_item(INSTALL_DISMISSED_KEY)
        if not raw:
            return True
        try:
            dismissed = int(raw)
        except ValueError:
            return True
        now_ms = int(time.time() * 1000) if now_ms is None else now_ms
        days = (now_ms - dismissed) / (1000 * 60 * 60 * 24)
        return days >= INSTALL_SNOOZE_DAYS


__all__ = [
    "Message",
    "Conversation",
    "LocalStorage",
    "ConversationStore",
    "Preferences",
    "title_from",
]
