"""
Chat sessions and checkpoints.

A session is an ordered conversation about one program. Messages and
checkpoints share one monotonically increasing sequence counter, so "created
after" is a plain integer comparison and survives persistence.

States:
    active           accepting messages
    archived-from    truncated by a rollback to a checkpoint; the next message
                     makes the session active again
"""

import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

from .exceptions import AddressNotFound, StructureError
from .mutation_interpreter import ProgramMode

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Chat"
DEFAULT_TITLE_MAX_LENGTH = 40


class SessionState(str, Enum):
    ACTIVE        = 'active'
    ARCHIVED_FROM = 'archived-from'


class MessageRole(str, Enum):
    USER      = 'user'
    ASSISTANT = 'assistant'
    SYSTEM    = 'system'


class ToolState(str, Enum):
    INPUT_AVAILABLE  = 'input-available'
    OUTPUT_AVAILABLE = 'output-available'
    OUTPUT_ERROR     = 'output-error'


# =============================================================================
# Message parts
# =============================================================================

@dataclass
class TextPart:
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {'type': 'text', 'text': self.text}


@dataclass
class ToolInvocationPart:
    """One agent tool call with its input and (once known) its output."""
    tool_name: str
    tool_call_id: str
    input: Dict[str, Any] = field(default_factory=dict)
    output: Optional[Dict[str, Any]] = None
    state: ToolState = ToolState.INPUT_AVAILABLE

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': 'tool-invocation',
            'toolName': self.tool_name,
            'toolCallId': self.tool_call_id,
            'input': self.input,
            'output': self.output,
            'state': self.state.value,
        }


MessagePart = Union[TextPart, ToolInvocationPart]


def part_from_dict(data: Dict[str, Any]) -> MessagePart:
    if not isinstance(data, dict):
        raise StructureError(f"Message part must be an object, got {data!r}")
    part_type = data.get('type')
    if part_type == 'text':
        return TextPart(str(data.get('text', '')))
    if part_type == 'tool-invocation':
        try:
            state = ToolState(data.get('state', ToolState.INPUT_AVAILABLE.value))
        except ValueError:
            raise StructureError(f"Unknown tool invocation state {data.get('state')!r}") from None
        return ToolInvocationPart(
            tool_name=data.get('toolName', ''),
            tool_call_id=data.get('toolCallId', ''),
            input=data.get('input') or {},
            output=data.get('output'),
            state=state,
        )
    raise StructureError(f"Unknown message part type {part_type!r}")


@dataclass
class ChatMessage:
    message_id: str
    session_id: str
    role: MessageRole
    parts: List[MessagePart] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    sequence: int = 0

    @property
    def text(self) -> str:
        return '\n'.join(p.text for p in self.parts if isinstance(p, TextPart))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.message_id,
            'session_id': self.session_id,
            'role': self.role.value,
            'parts': [p.to_dict() for p in self.parts],
            'created_at': self.created_at,
            'sequence': self.sequence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ChatMessage':
        return cls(
            message_id=data['id'],
            session_id=data['session_id'],
            role=MessageRole(data['role']),
            parts=[part_from_dict(p) for p in data.get('parts', [])],
            created_at=data.get('created_at', 0.0),
            sequence=data.get('sequence', 0),
        )


@dataclass(frozen=True)
class Checkpoint:
    """Immutable program snapshot tied to one message."""
    checkpoint_id: str
    session_id: str
    message_id: str
    number: int                  # display number, 1-based
    snapshot: str                # graph serialization or program text
    summary: Optional[str] = None
    created_at: float = 0.0
    sequence: int = 0

    @property
    def label(self) -> str:
        return self.summary or f"Checkpoint {self.number}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.checkpoint_id,
            'session_id': self.session_id,
            'message_id': self.message_id,
            'number': self.number,
            'label': self.label,
            'snapshot': self.snapshot,
            'summary': self.summary,
            'created_at': self.created_at,
            'sequence': self.sequence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Checkpoint':
        return cls(
            checkpoint_id=data['id'],
            session_id=data['session_id'],
            message_id=data['message_id'],
            number=data['number'],
            snapshot=data.get('snapshot', ''),
            summary=data.get('summary'),
            created_at=data.get('created_at', 0.0),
            sequence=data.get('sequence', 0),
        )


def derive_title(text: str, max_length: int = DEFAULT_TITLE_MAX_LENGTH) -> str:
    """Session title from a message: whitespace collapsed, cut with an ellipsis."""
    title = re.sub(r'\s+', ' ', text).strip()
    if not title:
        return DEFAULT_TITLE
    if len(title) > max_length:
        title = title[:max(max_length - 3, 1)].rstrip() + '...'
    return title


# =============================================================================
# Session
# =============================================================================

@dataclass
class ChatSession:
    session_id: str
    program_id: str
    mode: ProgramMode = ProgramMode.GRAPH
    title: str = DEFAULT_TITLE
    message_count: int = 0
    last_snapshot: str = ''
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    state: SessionState = SessionState.ACTIVE
    archived_from: Optional[str] = None
    messages: List[ChatMessage] = field(default_factory=list)
    checkpoints: List[Checkpoint] = field(default_factory=list)
    title_max_length: int = DEFAULT_TITLE_MAX_LENGTH
    next_sequence: int = 1

    @classmethod
    def create(cls, program_id: str, mode: Union[ProgramMode, str] = ProgramMode.GRAPH,
               snapshot: str = '', title_max_length: int = DEFAULT_TITLE_MAX_LENGTH) -> 'ChatSession':
        return cls(session_id=uuid.uuid4().hex, program_id=program_id, mode=ProgramMode(mode),
                   last_snapshot=snapshot, title_max_length=title_max_length)

    def _take_sequence(self) -> int:
        sequence = self.next_sequence
        self.next_sequence += 1
        return sequence

    def _touch(self) -> None:
        self.updated_at = time.time()

    # Messages -------------------------------------------------------------

    def add_message(self, role: Union[MessageRole, str],
                    content: Union[str, Sequence[MessagePart]]) -> ChatMessage:
        """Append a message; the first user message also sets the title."""
        role = MessageRole(role)
        parts = [TextPart(content)] if isinstance(content, str) else list(content)
        message = ChatMessage(
            message_id=uuid.uuid4().hex,
            session_id=self.session_id,
            role=role,
            parts=parts,
            sequence=self._take_sequence(),
        )
        self.messages.append(message)
        self.message_count = len(self.messages)
        if self.state is SessionState.ARCHIVED_FROM:
            self.state = SessionState.ACTIVE
            self.archived_from = None
        if role is MessageRole.USER and self.title == DEFAULT_TITLE and message.text.strip():
            self.title = derive_title(message.text, self.title_max_length)
        self._touch()
        return message

    def get_message(self, message_id: str) -> ChatMessage:
        for message in self.messages:
            if message.message_id == message_id:
                return message
        raise AddressNotFound(f"No message {message_id!r} in session {self.session_id}",
                              address=message_id)

    def record_snapshot(self, snapshot: str) -> None:
        """Keep the denormalized program snapshot in step with the live program."""
        self.last_snapshot = snapshot
        self._touch()

    # Checkpoints ----------------------------------------------------------

    @property
    def current_checkpoint(self) -> Optional[Checkpoint]:
        return self.checkpoints[-1] if self.checkpoints else None

    def get_checkpoint(self, checkpoint_id: str) -> Checkpoint:
        for checkpoint in self.checkpoints:
            if checkpoint.checkpoint_id == checkpoint_id:
                return checkpoint
        raise AddressNotFound(f"No checkpoint {checkpoint_id!r} in session {self.session_id}",
                              address=checkpoint_id)

    def create_checkpoint(self, after_message_id: str, snapshot: str,
                          summary: Optional[str] = None) -> Checkpoint:
        self.get_message(after_message_id)
        number = max((c.number for c in self.checkpoints), default=0) + 1
        checkpoint = Checkpoint(
            checkpoint_id=uuid.uuid4().hex,
            session_id=self.session_id,
            message_id=after_message_id,
            number=number,
            snapshot=snapshot,
            summary=summary or None,
            created_at=time.time(),
            sequence=self._take_sequence(),
        )
        self.checkpoints.append(checkpoint)
        self._touch()
        logger.info("Checkpoint %d created in session %s", number, self.session_id)
        return checkpoint

    def rollback_to(self, checkpoint_id: str) -> Checkpoint:
        """
        Truncate the session back to ``checkpoint_id``.

        Messages created after the checkpoint's message are deleted, and so are
        checkpoints created after the checkpoint or anchored to a deleted
        message. The checkpoint's snapshot becomes the session snapshot. This
        cannot be undone.
        """
        checkpoint = self.get_checkpoint(checkpoint_id)
        anchor = self.get_message(checkpoint.message_id)

        dropped_messages = len(self.messages)
        self.messages = [m for m in self.messages if m.sequence <= anchor.sequence]
        dropped_messages -= len(self.messages)
        kept_ids = {m.message_id for m in self.messages}
        # a surviving checkpoint must still have its message to roll back to
        self.checkpoints = [c for c in self.checkpoints
                            if c.sequence <= checkpoint.sequence and c.message_id in kept_ids]
        self.message_count = len(self.messages)
        self.last_snapshot = checkpoint.snapshot
        self.state = SessionState.ARCHIVED_FROM
        self.archived_from = checkpoint.checkpoint_id
        self._touch()
        logger.info("Session %s rolled back to checkpoint %d (%d messages dropped)",
                    self.session_id, checkpoint.number, dropped_messages)
        return checkpoint

    def delete_checkpoint(self, checkpoint_id: str) -> None:
        checkpoint = self.get_checkpoint(checkpoint_id)
        self.checkpoints.remove(checkpoint)
        if self.archived_from == checkpoint_id:
            self.archived_from = None
        self._touch()

    # Serialization --------------------------------------------------------

    def summary_dict(self) -> Dict[str, Any]:
        """Session record without the sub-collections."""
        return {
            'id': self.session_id,
            'program_id': self.program_id,
            'mode': self.mode.value,
            'title': self.title,
            'message_count': self.message_count,
            'last_snapshot': self.last_snapshot,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
            'state': self.state.value,
            'archived_from': self.archived_from,
            'checkpoint_count': len(self.checkpoints),
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.summary_dict()
        data['messages'] = [m.to_dict() for m in self.messages]
        data['checkpoints'] = [c.to_dict() for c in self.checkpoints]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any],
                  title_max_length: int = DEFAULT_TITLE_MAX_LENGTH) -> 'ChatSession':
        messages = [ChatMessage.from_dict(m) for m in data.get('messages', [])]
        checkpoints = [Checkpoint.from_dict(c) for c in data.get('checkpoints', [])]
        highest = max([m.sequence for m in messages] + [c.sequence for c in checkpoints] + [0])
        return cls(
            session_id=data['id'],
            program_id=data['program_id'],
            mode=ProgramMode(data.get('mode', ProgramMode.GRAPH.value)),
            title=data.get('title', DEFAULT_TITLE),
            message_count=len(messages),
            last_snapshot=data.get('last_snapshot', ''),
            created_at=data.get('created_at', 0.0),
            updated_at=data.get('updated_at', 0.0),
            state=SessionState(data.get('state', SessionState.ACTIVE.value)),
            archived_from=data.get('archived_from'),
            messages=messages,
            checkpoints=checkpoints,
            title_max_length=title_max_length,
            next_sequence=highest + 1,
        )
