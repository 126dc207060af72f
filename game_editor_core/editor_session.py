"""
Editor sessions: one chat session bound to the interpreter that owns its program.

The interpreter's commit listener writes every successful mutation straight
into the session's ``last_snapshot``, so the persisted snapshot and the live
program never diverge. ``SessionManager`` keeps the live sessions of the
process and hands them to a store for persistence.
"""

import logging
import threading
import uuid
from typing import Any, Dict, List, Optional, Union

from .block_registry import BlockRegistry
from .chat_session import (
    DEFAULT_TITLE_MAX_LENGTH, ChatMessage, ChatSession, Checkpoint, MessagePart,
    MessageRole, ToolInvocationPart, ToolState,
)
from .code_generator import GenerationResult
from .exceptions import AddressNotFound, Busy, StructureError
from .mutation_interpreter import (
    CommandResult, GraphInterpreter, MutationInterpreter, ProgramMode, make_interpreter,
)

logger = logging.getLogger(__name__)


class EditorSession:
    """A chat session plus its live program."""

    def __init__(self, chat: ChatSession, registry: Optional[BlockRegistry] = None):
        self.chat = chat
        self.interpreter: MutationInterpreter = make_interpreter(
            chat.mode, chat.session_id, chat.last_snapshot, registry)
        self.interpreter.add_listener(self._on_commit)

    @property
    def session_id(self) -> str:
        return self.chat.session_id

    @property
    def mode(self) -> ProgramMode:
        return self.chat.mode

    def _on_commit(self, result: CommandResult) -> None:
        self.chat.record_snapshot(self.interpreter.snapshot())

    # Conversation --------------------------------------------------------

    def add_message(self, role: Union[MessageRole, str],
                    content: Union[str, List[MessagePart]]) -> ChatMessage:
        return self.chat.add_message(role, content)

    def execute(self, payload: Dict[str, Any], tool_call_id: Optional[str] = None) -> CommandResult:
        """
        Run one agent command and record it in the transcript.

        The command becomes a tool-invocation part on the latest assistant
        message (a new assistant message is started when the transcript does
        not end with one). Failed commands are recorded too, with the
        ``output-error`` state.
        """
        result = self.interpreter.execute(payload)
        part = ToolInvocationPart(
            tool_name=self.interpreter.tool_name,
            tool_call_id=tool_call_id or uuid.uuid4().hex[:12],
            input=dict(payload) if isinstance(payload, dict) else {},
            output=result.to_dict(),
            state=ToolState.OUTPUT_AVAILABLE if result.success else ToolState.OUTPUT_ERROR,
        )
        messages = self.chat.messages
        if messages and messages[-1].role is MessageRole.ASSISTANT:
            messages[-1].parts.append(part)
        else:
            self.chat.add_message(MessageRole.ASSISTANT, [part])
        return result

    # Program -------------------------------------------------------------

    def snapshot(self) -> str:
        return self.interpreter.snapshot()

    def generate(self) -> Optional[GenerationResult]:
        """Generated code for graph-mode sessions; None in text mode."""
        if isinstance(self.interpreter, GraphInterpreter):
            return self.interpreter.generate()
        return None

    def program_code(self) -> str:
        """What the preview runtime receives: generated code or the raw script."""
        generation = self.generate()
        return generation.code if generation is not None else self.interpreter.snapshot()

    # Checkpoints ---------------------------------------------------------

    def create_checkpoint(self, after_message_id: Optional[str] = None,
                          summary: Optional[str] = None) -> Checkpoint:
        """Capture the live program after ``after_message_id`` (default: the latest message)."""
        if after_message_id is None:
            if not self.chat.messages:
                raise StructureError("A checkpoint needs at least one message to attach to",
                                     {'session_id': self.session_id})
            after_message_id = self.chat.messages[-1].message_id
        return self.chat.create_checkpoint(after_message_id, self.interpreter.snapshot(), summary)

    def rollback_to(self, checkpoint_id: str) -> Checkpoint:
        """Restore the program first, so a rejected restore leaves the transcript intact."""
        checkpoint = self.chat.get_checkpoint(checkpoint_id)
        self.interpreter.restore(checkpoint.snapshot)
        return self.chat.rollback_to(checkpoint_id)

    def delete_checkpoint(self, checkpoint_id: str) -> None:
        self.chat.delete_checkpoint(checkpoint_id)

    def to_dict(self) -> Dict[str, Any]:
        data = self.chat.to_dict()
        data['program'] = self.interpreter.snapshot()
        data['turns'] = self.interpreter.turn_history()
        return data


class SessionManager:
    """
    Live editor sessions of this process.

    ``store`` is any object with ``save_session(dict)``, ``load_session(id)``,
    ``list_sessions(program_id)`` and ``delete_session(id)``; without one the
    manager keeps sessions in memory only.
    """

    def __init__(self, store: Any = None, registry: Optional[BlockRegistry] = None,
                 title_max_length: int = DEFAULT_TITLE_MAX_LENGTH):
        self.store = store
        self.registry = registry
        self.title_max_length = title_max_length
        self._sessions: Dict[str, EditorSession] = {}
        self._lock = threading.RLock()

    def create_session(self, program_id: str, mode: Union[ProgramMode, str] = ProgramMode.GRAPH,
                       snapshot: str = '') -> EditorSession:
        try:
            mode = ProgramMode(mode)
        except ValueError:
            raise StructureError(f"Unknown mode {mode!r}; use one of {[m.value for m in ProgramMode]}",
                                 {'mode': mode}) from None
        chat = ChatSession.create(program_id, mode, snapshot, self.title_max_length)
        session = EditorSession(chat, self.registry)
        with self._lock:
            self._sessions[chat.session_id] = session
        self.save(session)
        logger.info("Session %s created for program %s (%s)", chat.session_id, program_id, mode.value)
        return session

    def get_session(self, session_id: str) -> EditorSession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                return session
            data = self.store.load_session(session_id) if self.store is not None else None
            if data is None:
                raise AddressNotFound(f"No session {session_id!r}", address=session_id)
            session = EditorSession(ChatSession.from_dict(data, self.title_max_length), self.registry)
            self._sessions[session_id] = session
            logger.debug("Session %s loaded from store", session_id)
            return session

    def list_sessions(self, program_id: Optional[str] = None) -> List[Dict[str, Any]]:
        if self.store is not None:
            return self.store.list_sessions(program_id)
        with self._lock:
            chats = [s.chat for s in self._sessions.values()
                     if program_id is None or s.chat.program_id == program_id]
        chats.sort(key=lambda c: c.updated_at, reverse=True)
        return [c.summary_dict() for c in chats]

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            live = self._sessions.pop(session_id, None)
            if live is not None and live.interpreter.guard.busy:
                self._sessions[session_id] = live
                raise Busy(session_id)
            stored = self.store.delete_session(session_id) if self.store is not None else False
        if live is None and not stored:
            raise AddressNotFound(f"No session {session_id!r}", address=session_id)
        logger.info("Session %s deleted", session_id)

    def save(self, session: EditorSession) -> None:
        if self.store is not None:
            self.store.save_session(session.chat.to_dict())

    # Persisted operations -------------------------------------------------

    def add_message(self, session_id: str, role: Union[MessageRole, str],
                    content: Union[str, List[MessagePart]]) -> ChatMessage:
        session = self.get_session(session_id)
        message = session.add_message(role, content)
        self.save(session)
        return message

    def execute(self, session_id: str, payload: Dict[str, Any],
                tool_call_id: Optional[str] = None) -> CommandResult:
        session = self.get_session(session_id)
        result = session.execute(payload, tool_call_id)
        self.save(session)
        return result

    def create_checkpoint(self, session_id: str, after_message_id: Optional[str] = None,
                          summary: Optional[str] = None) -> Checkpoint:
        session = self.get_session(session_id)
        checkpoint = session.create_checkpoint(after_message_id, summary)
        self.save(session)
        return checkpoint

    def rollback_to(self, session_id: str, checkpoint_id: str) -> Checkpoint:
        session = self.get_session(session_id)
        checkpoint = session.rollback_to(checkpoint_id)
        self.save(session)
        return checkpoint

    def delete_checkpoint(self, session_id: str, checkpoint_id: str) -> None:
        session = self.get_session(session_id)
        session.delete_checkpoint(checkpoint_id)
        self.save(session)
