"""
Game Editor Core - block-based authoring of p5.js sketches.

A typed block catalog, a program graph with validated edits, deterministic
code generation, the agent command interpreter, and chat sessions with
checkpoint rollback.
"""

__version__ = "0.1.0"

from .exceptions import (
    EditorError, UnknownKind, TypeMismatch, StructureError, AddressNotFound, Busy,
    GenerationDiagnostic,
)
from .block_schema import (
    ValueType, BlockShape, FieldType, ValueSocket, StatementSlot, LiteralField, BlockKind,
)
from .block_registry import BlockRegistry, get_default_registry
from .program_graph import BlockInstance, SocketBinding, ProgramGraph
from .code_generator import (
    Precedence, GeneratedFragment, GenerationResult, CodeGenerator, generate_code,
)
from .blockly_format import from_blockly_json, to_blockly_json
from .text_buffer import TextProgramBuffer
from .mutation_interpreter import (
    ProgramMode, CommandResult, MutationInterpreter, GraphInterpreter, TextInterpreter,
    make_interpreter,
)
from .chat_session import (
    SessionState, MessageRole, ToolState, TextPart, ToolInvocationPart, ChatMessage,
    Checkpoint, ChatSession,
)
from .editor_session import EditorSession, SessionManager

__all__ = [
    'EditorError', 'UnknownKind', 'TypeMismatch', 'StructureError', 'AddressNotFound', 'Busy',
    'GenerationDiagnostic',
    'ValueType', 'BlockShape', 'FieldType', 'ValueSocket', 'StatementSlot', 'LiteralField',
    'BlockKind', 'BlockRegistry', 'get_default_registry',
    'BlockInstance', 'SocketBinding', 'ProgramGraph',
    'Precedence', 'GeneratedFragment', 'GenerationResult', 'CodeGenerator', 'generate_code',
    'from_blockly_json', 'to_blockly_json', 'TextProgramBuffer',
    'ProgramMode', 'CommandResult', 'MutationInterpreter', 'GraphInterpreter',
    'TextInterpreter', 'make_interpreter',
    'SessionState', 'MessageRole', 'ToolState', 'TextPart', 'ToolInvocationPart',
    'ChatMessage', 'Checkpoint', 'ChatSession',
    'EditorSession', 'SessionManager',
]
