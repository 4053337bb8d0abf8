"""
Conversation Store - the Persistence Gateway for execution state.

Each conversation is one record holding the serialized execution state plus a
transcript of user and agent messages. File-backed records live at:
  {base_path}/conversations/conv_YYYYMMDD_HHMMSS_{uuid}.json
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from flowengine.errors import PersistenceError
from flowengine.graph.state import ExecutionState
from flowengine.utils.io import atomic_write

logger = logging.getLogger(__name__)

TITLE_PREVIEW_CHARS = 50


def _now() -> str:
    return datetime.now().isoformat()


def generate_conversation_id() -> str:
    """
    Generate a conversation ID in format: conv_YYYYMMDD_HHMMSS_{uuid}.

    Returns:
        Conversation ID string (e.g., "conv_20260206_143022_abc12345")
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return f"conv_{timestamp}_{uuid.uuid4().hex[:8]}"


def conversation_title(user_message: str | None) -> str:
    if user_message:
        suffix = "..." if len(user_message) > TITLE_PREVIEW_CHARS else ""
        return f"Conversation about: {user_message[:TITLE_PREVIEW_CHARS]}{suffix}"
    return f"Conversation {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"


class ConversationMessage(BaseModel):
    role: Literal["user", "agent"]
    content: str
    node_id: str | None = None
    node_type: str | None = None
    created_at: str = Field(default_factory=_now)


class ConversationRecord(BaseModel):
    """One persisted conversation."""

    id: str
    flow_id: str
    title: str
    state: ExecutionState
    messages: list[ConversationMessage] = Field(default_factory=list)
    created_at: str = Field(default_factory=_now)
    updated_at: str = Field(default_factory=_now)

    model_config = {"extra": "allow"}


class ConversationStore(ABC):
    """
    Loads and saves conversation state.

    Subclasses implement record I/O; ``save`` builds the record the same way
    for every backend.
    """

    @abstractmethod
    async def get_record(self, conversation_id: str) -> ConversationRecord | None:
        """Return the full record, or None when the conversation is unknown."""

    @abstractmethod
    async def _write_record(self, record: ConversationRecord) -> None:
        pass

    async def load(self, conversation_id: str) -> ExecutionState | None:
        """Return the saved execution state, or None when the conversation is unknown."""
        record = await self.get_record(conversation_id)
        return record.state if record else None

    async def save(
        self,
        state: ExecutionState,
        flow_id: str,
        conversation_id: str | None = None,
        last_user_message: str | None = None,
    ) -> str:
        """
        Persist ``state``, creating the conversation when ``conversation_id`` is None.

        The user message (if any) and the latest history output are appended
        to the transcript.

        Returns:
            The conversation ID

        Raises:
            PersistenceError: if the backend fails
        """
        record = await self.get_record(conversation_id) if conversation_id else None
        if record is None:
            record = ConversationRecord(
                id=conversation_id or generate_conversation_id(),
                flow_id=flow_id,
                title=conversation_title(last_user_message),
                state=state,
            )
        else:
            record.state = state
            record.updated_at = _now()

        if last_user_message:
            record.messages.append(ConversationMessage(role="user", content=last_user_message))
        if state.history and state.history[-1].output:
            last = state.history[-1]
            content = last.output if isinstance(last.output, str) else str(last.output)
            record.messages.append(
                ConversationMessage(
                    role="agent", content=content, node_id=last.node_id, node_type=last.node_type
                )
            )

        await self._write_record(record)
        logger.debug(f"Saved conversation {record.id} ({len(record.state.history)} steps)")
        return record.id

    async def list_conversations(self, flow_id: str | None = None) -> list[ConversationRecord]:
        return []

    async def delete(self, conversation_id: str) -> bool:
        return False


class InMemoryConversationStore(ConversationStore):
    """Keeps records in a dict. Records are copied in and out."""

    def __init__(self):
        self._records: dict[str, ConversationRecord] = {}

    async def get_record(self, conversation_id: str) -> ConversationRecord | None:
        record = self._records.get(conversation_id)
        return record.model_copy(deep=True) if record else None

    async def _write_record(self, record: ConversationRecord) -> None:
        self._records[record.id] = record.model_copy(deep=True)

    async def list_conversations(self, flow_id: str | None = None) -> list[ConversationRecord]:
        records = [
            r.model_copy(deep=True)
            for r in self._records.values()
            if flow_id is None or r.flow_id == flow_id
        ]
        records.sort(key=lambda r: r.updated_at, reverse=True)
        return records

    async def delete(self, conversation_id: str) -> bool:
        return self._records.pop(conversation_id, None) is not None


class FileConversationStore(ConversationStore):
    """
    One JSON file per conversation.

    Writes go through a temp file + rename so a crash never leaves a
    half-written record behind.
    """

    def __init__(self, base_path: Path | str):
        """
        Initialize the store.

        Args:
            base_path: Storage root (e.g., ~/.flowengine/storage)
        """
        self.base_path = Path(base_path)
        self.conversations_dir = self.base_path / "conversations"

    def get_record_path(self, conversation_id: str) -> Path:
        if not conversation_id or "/" in conversation_id or conversation_id.startswith("."):
            raise PersistenceError(f"Invalid conversation id: {conversation_id!r}")
        return self.conversations_dir / f"{conversation_id}.json"

    async def get_record(self, conversation_id: str) -> ConversationRecord | None:
        path = self.get_record_path(conversation_id)

        def _read() -> ConversationRecord | None:
            if not path.exists():
                return None
            return ConversationRecord.model_validate_json(path.read_text(encoding="utf-8"))

        try:
            return await asyncio.to_thread(_read)
        except (OSError, ValidationError) as e:
            raise PersistenceError(f"Failed to load conversation {conversation_id}: {e}") from e

    async def _write_record(self, record: ConversationRecord) -> None:
        path = self.get_record_path(record.id)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            with atomic_write(path) as f:
                f.write(record.model_dump_json(indent=2))

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise PersistenceError(f"Failed to save conversation {record.id}: {e}") from e

    async def list_conversations(self, flow_id: str | None = None) -> list[ConversationRecord]:
        def _scan() -> list[ConversationRecord]:
            records: list[ConversationRecord] = []
            if not self.conversations_dir.exists():
                return records
            for path in self.conversations_dir.glob("*.json"):
                try:
                    record = ConversationRecord.model_validate_json(
                        path.read_text(encoding="utf-8")
                    )
                except (OSError, ValidationError) as e:
                    logger.warning(f"Failed to load {path}: {e}")
                    continue
                if flow_id is None or record.flow_id == flow_id:
                    records.append(record)
            records.sort(key=lambda r: r.updated_at, reverse=True)
            return records

        return await asyncio.to_thread(_scan)

    async def delete(self, conversation_id: str) -> bool:
        path = self.get_record_path(conversation_id)

        def _delete() -> bool:
            if not path.exists():
                return False
            path.unlink()
            logger.info(f"Deleted conversation {conversation_id}")
            return True

        return await asyncio.to_thread(_delete)


def summarize_record(record: ConversationRecord) -> dict[str, Any]:
    """Listing-friendly view of a record, without the state body."""
    return {
        "id": record.id,
        "flow_id": record.flow_id,
        "title": record.title,
        "message_count": len(record.messages),
        "completed": record.state.completed,
        "updated_at": record.updated_at,
    }
