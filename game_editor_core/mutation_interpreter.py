"""
Mutation Interpreter: applies agent commands to a graph or a text buffer.

Graph-mode (tool ``str_replace_based_edit_tool``, path ``workspace.json``):
    view         serialized graph, optionally line-numbered over a range
    create       replace the whole graph (native format or Blockly workspace)
    str_replace  structural: swap one slot's chain or one socket's value
                 textual:    old_str → new_str on the pretty-printed graph

Text-mode (tool ``js_code_editor``, path ``sketch.js``):
    view         program text, optionally line-numbered over a range
    replace      replace the whole text
    patch        old_str → new_str (first match) or line_range → new_str

Every command is one turn:

    SUBMITTED → VALIDATING → APPLYING → COMMITTED
                     └──────────┴──────→ FAILED

Validation runs against a private working copy, so a FAILED turn leaves the
live program exactly as it was. A per-session single-flight guard rejects a
command that arrives while another one is still in flight with ``Busy``.
"""

import json
import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .block_registry import BlockRegistry
from .blockly_format import from_blockly_json, is_blockly_workspace
from .code_generator import CodeGenerator, GenerationResult
from .exceptions import AddressNotFound, Busy, EditorError, StructureError
from .program_graph import ProgramGraph, SocketBinding
from .text_buffer import TextProgramBuffer, number_lines

logger = logging.getLogger(__name__)


class ProgramMode(str, Enum):
    """Authoring surface of a session; fixed for the session's lifetime."""
    GRAPH = 'blockly'
    TEXT  = 'javascript'


GRAPH_TOOL = 'str_replace_based_edit_tool'
TEXT_TOOL = 'js_code_editor'
GRAPH_PATH = 'workspace.json'
TEXT_PATH = 'sketch.js'


class TurnState(str, Enum):
    IDLE       = 'idle'
    SUBMITTED  = 'submitted'
    VALIDATING = 'validating'
    APPLYING   = 'applying'
    COMMITTED  = 'committed'
    FAILED     = 'failed'


@dataclass
class CommandResult:
    """Machine-checkable outcome of one command."""
    success: bool
    command: str = ''
    message: str = ''
    error: str = ''
    error_kind: str = ''
    content: Optional[str] = None
    new_graph: Optional[Dict[str, Any]] = None
    new_text: Optional[str] = None
    generated_code: Optional[str] = None
    diagnostics: List[Dict[str, str]] = field(default_factory=list)

    @classmethod
    def failure(cls, command: str, error: EditorError) -> 'CommandResult':
        return cls(success=False, command=command, error=error.message,
                   error_kind=error.error_kind, message=f"Error: {error.message}")

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'success': self.success, 'command': self.command}
        if self.message:
            data['message'] = self.message
        if not self.success:
            data['error'] = self.error
            data['errorKind'] = self.error_kind
        if self.content is not None:
            data['content'] = self.content
        if self.new_graph is not None:
            data['newGraph'] = self.new_graph
        if self.new_text is not None:
            data['newText'] = self.new_text
        if self.generated_code is not None:
            data['generatedCode'] = self.generated_code
            data['diagnostics'] = list(self.diagnostics)
        return data


@dataclass
class TurnRecord:
    turn_id: str
    command: str
    state: TurnState = TurnState.SUBMITTED
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    error_kind: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'turn_id': self.turn_id,
            'command': self.command,
            'state': self.state.value,
            'started_at': self.started_at,
            'finished_at': self.finished_at,
            'error_kind': self.error_kind,
        }


class SingleFlightGuard:
    """At most one in-flight command per session; overlap is rejected, never queued."""

    def __init__(self, session_id: str = ''):
        self.session_id = session_id
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self):
        if not self._lock.acquire(blocking=False):
            raise Busy(self.session_id)
        try:
            yield
        finally:
            self._lock.release()


CommitListener = Callable[[CommandResult], None]


class MutationInterpreter:
    """Shared turn machinery; subclasses supply the program state and commands."""

    mode: ProgramMode
    tool_name = ''
    path = ''
    commands: Tuple[str, ...] = ()

    def __init__(self, session_id: str = ''):
        self.session_id = session_id
        self.guard = SingleFlightGuard(session_id)
        self.turn_state = TurnState.IDLE
        self.turns: List[TurnRecord] = []
        self._listeners: List[CommitListener] = []

    def add_listener(self, listener: CommitListener) -> None:
        """Call ``listener(result)`` after every committed mutation (the guard is still held)."""
        self._listeners.append(listener)

    def _set_state(self, turn: TurnRecord, state: TurnState) -> None:
        turn.state = state
        self.turn_state = state

    def execute(self, payload: Dict[str, Any]) -> CommandResult:
        """Run one command as a single transaction and report the outcome."""
        command = payload.get('command', '') if isinstance(payload, dict) else ''
        try:
            with self.guard.hold():
                return self._run_turn(command, payload)
        except Busy as e:
            logger.warning("Rejected %r on busy session %s", command, self.session_id)
            return CommandResult.failure(command, e)

    def _run_turn(self, command: str, payload: Any) -> CommandResult:
        turn = TurnRecord(turn_id=uuid.uuid4().hex[:8], command=command)
        self.turns.append(turn)
        self._set_state(turn, TurnState.SUBMITTED)
        try:
            self._set_state(turn, TurnState.VALIDATING)
            self._check_payload(command, payload)
            result, commit = self._prepare(command, payload)
            if commit is not None:
                self._set_state(turn, TurnState.APPLYING)
                commit()
                result = self._describe_commit(result)
        except EditorError as e:
            self._set_state(turn, TurnState.FAILED)
            turn.error_kind = e.error_kind
            turn.finished_at = time.time()
            logger.warning("Command %r failed on session %s: %s [%s]",
                           command, self.session_id, e.message, e.error_kind)
            return CommandResult.failure(command, e)

        self._set_state(turn, TurnState.COMMITTED)
        turn.finished_at = time.time()
        if commit is not None:
            logger.info("Command %r committed on session %s", command, self.session_id)
            for listener in list(self._listeners):
                listener(result)
        return result

    def _check_payload(self, command: str, payload: Any) -> None:
        if not isinstance(payload, dict):
            raise StructureError("Command payload must be an object")
        if not command:
            raise StructureError("Command payload has no 'command'")
        if command not in self.commands:
            raise StructureError(
                f"Command {command!r} is not available in {self.mode.value} mode; "
                f"use one of {list(self.commands)}",
                {'command': command, 'mode': self.mode.value},
            )
        path = payload.get('path')
        if path is not None and path != self.path:
            raise AddressNotFound(f"Unknown path {path!r}; the program lives at {self.path!r}",
                                  address=path)

    def _prepare(self, command: str, payload: Dict[str, Any]) -> Tuple[CommandResult, Optional[Callable]]:
        """Validate ``payload`` against a working copy; return the result and a commit callable."""
        raise NotImplementedError

    def _describe_commit(self, result: CommandResult) -> CommandResult:
        return result

    # Program state -------------------------------------------------------

    def snapshot(self) -> str:
        raise NotImplementedError

    def restore(self, snapshot: str) -> None:
        """Replace the live program with ``snapshot`` (used by checkpoint rollback)."""
        with self.guard.hold():
            self._restore(snapshot)

    def _restore(self, snapshot: str) -> None:
        raise NotImplementedError

    def turn_history(self) -> List[Dict[str, Any]]:
        return [t.to_dict() for t in self.turns]


def _view_range(payload: Dict[str, Any]) -> Optional[List[int]]:
    return payload.get('view_range')


def _require_str(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str):
        raise StructureError(f"'{key}' must be a string", {'field': key})
    return value


# =============================================================================
# Graph mode
# =============================================================================

class GraphInterpreter(MutationInterpreter):
    mode = ProgramMode.GRAPH
    tool_name = GRAPH_TOOL
    path = GRAPH_PATH
    commands = ('view', 'create', 'str_replace')

    def __init__(self, session_id: str = '', graph: Optional[ProgramGraph] = None,
                 registry: Optional[BlockRegistry] = None,
                 generator: Optional[CodeGenerator] = None):
        super().__init__(session_id)
        self.graph = graph if graph is not None else ProgramGraph(registry)
        self.registry = self.graph.registry
        self.generator = generator or CodeGenerator()

    def generate(self) -> GenerationResult:
        return self.generator.generate(self.graph)

    def snapshot(self) -> str:
        return self.graph.to_json()

    def _restore(self, snapshot: str) -> None:
        self.graph = ProgramGraph.deserialize(snapshot, self.registry) if snapshot else ProgramGraph(self.registry)

    def _prepare(self, command, payload):
        if command == 'view':
            return self._view(payload), None
        if command == 'create':
            working = self._load_graph(payload)
            message = f"Created workspace with {len(working)} blocks"
        else:
            working = self._str_replace(payload)
            message = "Workspace updated"

        def commit():
            self.graph = working
        return CommandResult(success=True, command=command, message=message), commit

    def _describe_commit(self, result: CommandResult) -> CommandResult:
        generation = self.generate()
        result.new_graph = self.graph.serialize()
        result.generated_code = generation.code
        result.diagnostics = [d.to_dict() for d in generation.diagnostics]
        return result

    def _view(self, payload: Dict[str, Any]) -> CommandResult:
        if self.graph.is_empty():
            return CommandResult(
                success=True, command='view', content='',
                message="The workspace is empty. Use the create command to build one.",
            )
        text = self.graph.to_json()
        view_range = _view_range(payload)
        content = text if view_range is None else number_lines(text, view_range)
        return CommandResult(success=True, command='view', content=content,
                             message=f"Workspace has {len(self.graph)} blocks")

    def _load_graph(self, payload: Dict[str, Any]) -> ProgramGraph:
        data = payload.get('graph')
        if data is None:
            text = _require_str(payload, 'file_text')
            try:
                data = json.loads(text)
            except ValueError as e:
                raise StructureError(f"file_text is not valid JSON: {e}") from None
        if is_blockly_workspace(data):
            return from_blockly_json(data, self.registry)
        return ProgramGraph.deserialize(data, self.registry)

    def _str_replace(self, payload: Dict[str, Any]) -> ProgramGraph:
        if 'target' in payload:
            return self._structural_replace(payload)
        if 'old_str' in payload:
            return self._textual_replace(payload)
        raise StructureError("str_replace needs either 'target' or 'old_str'")

    def _structural_replace(self, payload: Dict[str, Any]) -> ProgramGraph:
        target = payload['target']
        if not isinstance(target, dict) or not isinstance(target.get('block'), str):
            raise StructureError("target must be {'block': id, 'slot'|'socket': name}")
        for key in ('slot', 'socket'):
            if key in target and not isinstance(target[key], str):
                raise StructureError(f"target {key} must be a name string", {key: target[key]})
        working = self.graph.clone()
        block_id = target['block']
        working.get(block_id)

        if 'slot' in target:
            body = payload.get('new_body')
            head = None
            if body is not None:
                if not isinstance(body, dict):
                    raise StructureError("new_body must be {'head': id, 'blocks': {...}}")
                head = working.graft(body.get('blocks') or {}, body.get('head'))
            working.replace_slot(block_id, target['slot'], head)
        elif 'socket' in target:
            value = payload.get('new_value')
            if value is None:
                binding = None
            elif isinstance(value, dict) and 'literal' in value:
                binding = SocketBinding.of_literal(value['literal'])
            elif isinstance(value, dict):
                head = working.graft(value.get('blocks') or {}, value.get('head'))
                binding = SocketBinding.of_block(head) if head else None
            else:
                raise StructureError("new_value must be {'literal': v} or {'head': id, 'blocks': {...}}")
            working.replace_socket(block_id, target['socket'], binding)
        else:
            raise StructureError("target needs a 'slot' or a 'socket'")
        return working

    def _textual_replace(self, payload: Dict[str, Any]) -> ProgramGraph:
        old_str = _require_str(payload, 'old_str')
        new_str = _require_str(payload, 'new_str')
        if not old_str:
            raise StructureError("old_str must not be empty")
        text = self.graph.to_json()
        count = text.count(old_str)
        if count == 0:
            raise AddressNotFound("old_str was not found in workspace.json", address=old_str)
        if count > 1:
            raise AddressNotFound(
                f"old_str matches {count} places in workspace.json; include more context",
                address=old_str, details={'matches': count},
            )
        return ProgramGraph.deserialize(text.replace(old_str, new_str, 1), self.registry)


# =============================================================================
# Text mode
# =============================================================================

class TextInterpreter(MutationInterpreter):
    mode = ProgramMode.TEXT
    tool_name = TEXT_TOOL
    path = TEXT_PATH
    commands = ('view', 'replace', 'patch')

    def __init__(self, session_id: str = '', text: str = ''):
        super().__init__(session_id)
        self.buffer = TextProgramBuffer(text)

    def snapshot(self) -> str:
        return self.buffer.text

    def _restore(self, snapshot: str) -> None:
        self.buffer = TextProgramBuffer(snapshot or '')

    def _prepare(self, command, payload):
        if command == 'view':
            if self.buffer.is_empty():
                return CommandResult(
                    success=True, command='view', content='',
                    message="The program is empty. Use the replace command to write one.",
                ), None
            return CommandResult(success=True, command='view',
                                 content=self.buffer.view(_view_range(payload)),
                                 message=f"Program has {self.buffer.line_count()} lines"), None

        working = self.buffer.clone()
        if command == 'replace':
            working.replace(payload['code'] if 'code' in payload else _require_str(payload, 'new_text'))
            message = "Program replaced"
        elif 'line_range' in payload:
            working.patch_lines(payload['line_range'], _require_str(payload, 'new_str'))
            message = "Lines replaced"
        else:
            working.patch(_require_str(payload, 'old_str'), _require_str(payload, 'new_str'))
            message = "Program patched"

        def commit():
            self.buffer = working
        return CommandResult(success=True, command=command, message=message), commit

    def _describe_commit(self, result: CommandResult) -> CommandResult:
        result.new_text = self.buffer.text
        return result


def make_interpreter(mode: ProgramMode, session_id: str = '', snapshot: str = '',
                     registry: Optional[BlockRegistry] = None) -> MutationInterpreter:
    """Interpreter for ``mode`` with its program loaded from ``snapshot``."""
    mode = ProgramMode(mode)
    if mode is ProgramMode.GRAPH:
        graph = ProgramGraph.deserialize(snapshot, registry) if snapshot else ProgramGraph(registry)
        return GraphInterpreter(session_id, graph=graph)
    return TextInterpreter(session_id, text=snapshot)
