"""
Conversation Normalizer

Chat transcripts are stored in three shapes:

1. AiThread / AiMessage            - legacy AI threads with navigation metadata
2. TextConversations / TextChats   - text widget, structured action columns
3. VoiceConversations / VoiceChats - voice widget, same columns as text

Every shape is converted into one canonical Thread so that classification and
aggregation only ever see a single model. Rows are plain mappings (see
ConversationDataService for how they are loaded).
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from app.utils.helpers import coerce_datetime, isoformat_or_none


class SourceKind(str, Enum):
    AI_THREAD = "ai_thread"
    TEXT_CONVERSATION = "text_conversation"
    VOICE_CONVERSATION = "voice_conversation"


# Type given to a user message whose row carries none
_DEFAULT_USER_TYPE = {
    SourceKind.AI_THREAD: "text",
    SourceKind.TEXT_CONVERSATION: "text",
    SourceKind.VOICE_CONVERSATION: "voice",
}

_TITLES = {
    SourceKind.AI_THREAD: "Untitled Thread",
    SourceKind.TEXT_CONVERSATION: "Text Conversation",
    SourceKind.VOICE_CONVERSATION: "Voice Conversation",
}

# source_type labels the dashboard front end already understands
_SOURCE_TYPE_LABELS = {
    SourceKind.AI_THREAD: "aithread",
    SourceKind.TEXT_CONVERSATION: "textconversation",
    SourceKind.VOICE_CONVERSATION: "voiceconversation",
}


@dataclass
class Message:
    """One chat message in canonical form"""
    id: str
    thread_id: str
    role: str  # user | assistant
    content: str
    created_at: datetime
    type: Optional[str] = None  # text | voice | ai | None
    page_url: Optional[str] = None
    scroll_to_text: Optional[str] = None
    action: Optional[str] = None
    action_type: Any = None

    @property
    def is_assistant(self) -> bool:
        return self.role == "assistant"

    @property
    def is_user(self) -> bool:
        return self.role == "user"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "type": self.type,
            "createdAt": isoformat_or_none(self.created_at),
            "threadId": self.thread_id,
            "pageUrl": self.page_url,
            "scrollToText": self.scroll_to_text,
        }


@dataclass
class Thread:
    """A normalized conversation, whatever shape it was stored in"""
    id: str
    source_kind: SourceKind
    created_at: datetime
    last_message_at: datetime
    messages: List[Message] = field(default_factory=list)
    title: Optional[str] = None

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def has_voice_message(self) -> bool:
        return any(m.is_user and m.type == "voice" for m in self.messages)

    @property
    def has_text_message(self) -> bool:
        return any(m.is_user and m.type == "text" for m in self.messages)

    def with_messages(self, messages: List[Message]) -> "Thread":
        """Copy of this thread holding only `messages`."""
        return Thread(
            id=self.id,
            source_kind=self.source_kind,
            created_at=self.created_at,
            last_message_at=self.last_message_at,
            messages=list(messages),
            title=self.title,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Shape handed to the summarizer and the history view"""
        return {
            "id": self.id,
            "threadId": self.id,
            "title": self.title or _TITLES[self.source_kind],
            "createdAt": isoformat_or_none(self.created_at),
            "lastMessageAt": isoformat_or_none(self.last_message_at),
            "messageCount": self.message_count,
            "source_type": _SOURCE_TYPE_LABELS[self.source_kind],
            "messages": [m.to_dict() for m in self.messages],
        }


# Row = (header, message rows)
ConversationRows = Tuple[Mapping[str, Any], Sequence[Mapping[str, Any]]]


def _header_timestamps(header: Mapping[str, Any]) -> Tuple[Optional[datetime], Optional[datetime]]:
    created_at = coerce_datetime(header.get("created_at"))
    last_message_at = (
        coerce_datetime(header.get("most_recent_conversation_at"))
        or coerce_datetime(header.get("last_message_at"))
        or created_at
    )
    return created_at, last_message_at


def _finish_thread(
    header: Mapping[str, Any],
    kind: SourceKind,
    messages: List[Message],
    since: Optional[datetime],
) -> Optional[Thread]:
    if since is not None:
        messages = [m for m in messages if m.created_at >= since]
    if not messages:
        return None

    # sorted() is stable, so rows sharing a timestamp keep their stored order
    messages = sorted(messages, key=lambda m: m.created_at)

    created_at, last_message_at = _header_timestamps(header)
    created_at = created_at or messages[0].created_at
    last_message_at = last_message_at or messages[-1].created_at
    if last_message_at < created_at:
        last_message_at = created_at

    return Thread(
        id=str(header.get("id")),
        source_kind=kind,
        created_at=created_at,
        last_message_at=last_message_at,
        messages=messages,
        title=header.get("title") or _TITLES[kind],
    )


def _message_time(row: Mapping[str, Any], header: Mapping[str, Any]) -> Optional[datetime]:
    return coerce_datetime(row.get("created_at")) or coerce_datetime(header.get("created_at"))


def normalize_ai_thread(
    header: Mapping[str, Any],
    message_rows: Iterable[Mapping[str, Any]],
    since: Optional[datetime] = None,
) -> Optional[Thread]:
    """AiThread header + AiMessage rows -> Thread (None when nothing is left)."""
    thread_id = str(header.get("id"))
    messages = []
    for row in message_rows:
        created_at = _message_time(row, header)
        if created_at is None:
            continue
        role = "user" if row.get("role") == "user" else "assistant"
        msg_type = row.get("type")
        if role == "user" and not msg_type:
            msg_type = _DEFAULT_USER_TYPE[SourceKind.AI_THREAD]
        messages.append(Message(
            id=str(row.get("id")),
            thread_id=thread_id,
            role=role,
            content=row.get("content") or "",
            created_at=created_at,
            type=msg_type,
            page_url=row.get("page_url"),
            scroll_to_text=row.get("scroll_to_text"),
        ))
    return _finish_thread(header, SourceKind.AI_THREAD, messages, since)


def _normalize_chat_conversation(
    header: Mapping[str, Any],
    chat_rows: Iterable[Mapping[str, Any]],
    kind: SourceKind,
    since: Optional[datetime],
) -> Optional[Thread]:
    thread_id = str(header.get("id"))
    user_type = _DEFAULT_USER_TYPE[kind]
    messages = []
    for row in chat_rows:
        created_at = _message_time(row, header)
        if created_at is None:
            continue
        is_user = row.get("message_type") == "user"
        messages.append(Message(
            id=str(row.get("id")),
            thread_id=thread_id,
            role="user" if is_user else "assistant",
            content=row.get("content") or "",
            created_at=created_at,
            type=user_type if is_user else None,
            action=row.get("action"),
            action_type=row.get("action_type"),
        ))
    return _finish_thread(header, kind, messages, since)


def normalize_text_conversation(
    header: Mapping[str, Any],
    chat_rows: Iterable[Mapping[str, Any]],
    since: Optional[datetime] = None,
) -> Optional[Thread]:
    return _normalize_chat_conversation(header, chat_rows, SourceKind.TEXT_CONVERSATION, since)


def normalize_voice_conversation(
    header: Mapping[str, Any],
    chat_rows: Iterable[Mapping[str, Any]],
    since: Optional[datetime] = None,
) -> Optional[Thread]:
    return _normalize_chat_conversation(header, chat_rows, SourceKind.VOICE_CONVERSATION, since)


_NORMALIZERS = {
    SourceKind.AI_THREAD: normalize_ai_thread,
    SourceKind.TEXT_CONVERSATION: normalize_text_conversation,
    SourceKind.VOICE_CONVERSATION: normalize_voice_conversation,
}


def normalize_threads(
    ai_threads: Iterable[ConversationRows] = (),
    text_conversations: Iterable[ConversationRows] = (),
    voice_conversations: Iterable[ConversationRows] = (),
    since: Optional[datetime] = None,
) -> List[Thread]:
    """Normalize every source into one list, dropping empty threads."""
    threads: List[Thread] = []
    sources = (
        (SourceKind.AI_THREAD, ai_threads),
        (SourceKind.TEXT_CONVERSATION, text_conversations),
        (SourceKind.VOICE_CONVERSATION, voice_conversations),
    )
    for kind, rows in sources:
        normalize = _NORMALIZERS[kind]
        for header, message_rows in rows:
            thread = normalize(header, message_rows, since)
            if thread is not None:
                threads.append(thread)
    return threads


def sort_by_recent_activity(threads: Iterable[Thread]) -> List[Thread]:
    """Most recently active first, the order the history view lists them."""
    return sorted(threads, key=lambda t: t.last_message_at, reverse=True)
