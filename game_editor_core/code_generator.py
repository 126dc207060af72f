"""
Code Generator: turns a ProgramGraph into one block of p5.js script text.

Each entry point becomes one named top-level callback. Value blocks generate a
``GeneratedFragment`` (expression text plus a precedence rank); statement
blocks generate newline-terminated text. When a child expression is spliced
into a position that needs a tighter rank than the child has, it is wrapped in
parentheses.

Generation is a pure function of the graph: all per-run state (variable
declarations, helper functions, loop counter names, diagnostics) lives in a
fresh ``GenerationContext``. Unknown kinds and kinds without a generator are
reported as ``GenerationDiagnostic`` entries and contribute no text; generation
itself never raises for them.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Dict, List, Optional, Set, Union

from .block_registry import BlockRegistry
from .block_schema import BlockKind, FieldType, is_number
from .exceptions import GenerationDiagnostic
from .program_graph import BlockInstance, ProgramGraph

logger = logging.getLogger(__name__)


class Precedence(IntEnum):
    """Binding strength of an expression; higher binds tighter."""
    NONE           = 0
    ASSIGNMENT     = 1
    CONDITIONAL    = 2
    LOGICAL_OR     = 3
    LOGICAL_AND    = 4
    EQUALITY       = 5
    RELATIONAL     = 6
    ADDITIVE       = 7
    MULTIPLICATIVE = 8
    EXPONENT       = 9
    UNARY          = 10
    CALL           = 11
    ATOMIC         = 12

    def tighter(self) -> 'Precedence':
        return Precedence(min(self + 1, Precedence.ATOMIC))


@dataclass(frozen=True)
class GeneratedFragment:
    """Expression text and the rank it binds at."""
    code: str
    precedence: Precedence = Precedence.ATOMIC

    def wrapped_for(self, required: Precedence) -> str:
        if self.precedence < required:
            return f"({self.code})"
        return self.code


@dataclass
class GenerationResult:
    code: str
    diagnostics: List[GenerationDiagnostic] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.diagnostics

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'diagnostics': [d.to_dict() for d in self.diagnostics],
        }


GeneratorFn = Callable[['BlockContext'], Union[str, GeneratedFragment]]


# =============================================================================
# Identifiers and literals
# =============================================================================

RESERVED_WORDS = frozenset("""
    break case catch class const continue debugger default delete do else export
    extends false finally for function if import in instanceof let new null return
    super switch this throw true try typeof var void while with yield await enum
    setup draw width height key keyCode mouseX mouseY
""".split())

_IDENTIFIER_BAD_CHARS = re.compile(r'[^A-Za-z0-9_$]')


def sanitize_identifier(name: str) -> str:
    """Map any user-visible name onto a valid script identifier, deterministically."""
    cleaned = _IDENTIFIER_BAD_CHARS.sub('_', name.strip()) or '_'
    if cleaned[0].isdigit():
        cleaned = '_' + cleaned
    if cleaned in RESERVED_WORDS:
        cleaned += '_'
    return cleaned


def quote_string(text: str) -> str:
    """Single-quoted script string literal."""
    body = json.dumps(text)[1:-1].replace("\\\"", "\"").replace("'", "\\'")
    return f"'{body}'"


def format_number(value: Union[int, float]) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return repr(value)


def literal_fragment(value: Any) -> GeneratedFragment:
    """Render a socket literal as an expression."""
    if isinstance(value, bool):
        return GeneratedFragment('true' if value else 'false')
    if is_number(value):
        text = format_number(value)
        return GeneratedFragment(text, Precedence.UNARY if text.startswith('-') else Precedence.ATOMIC)
    if isinstance(value, str):
        return GeneratedFragment(quote_string(value))
    if isinstance(value, list):
        args = ', '.join(literal_fragment(v).code for v in value)
        return GeneratedFragment(f"createVector({args})", Precedence.CALL)
    return GeneratedFragment('undefined')


# =============================================================================
# Per-run state
# =============================================================================

class GenerationContext:
    """State for one ``CodeGenerator.generate`` call."""

    def __init__(self, graph: ProgramGraph, generators: Dict[str, GeneratorFn], indent: str):
        self.graph = graph
        self.registry: BlockRegistry = graph.registry
        self.generators = generators
        self.indent = indent
        self.diagnostics: List[GenerationDiagnostic] = []
        self.variables: List[str] = []
        self.helpers: Dict[str, str] = {}
        self._name_counts: Dict[str, int] = {}
        # user variable and procedure names; generated names must avoid them
        self._reserved = self._user_names(graph)

    def _user_names(self, graph: ProgramGraph) -> Set[str]:
        names = set()
        for instance in graph.instances():
            kind = self.registry.find_kind(instance.kind_id)
            if kind is None:
                continue
            named = [f.name for f in kind.fields if f.field_type is FieldType.VARIABLE]
            if kind.callback_field:
                named.append(kind.callback_field)
            for field_name in named:
                value = instance.fields.get(field_name)
                if value not in (None, ''):
                    names.add(sanitize_identifier(str(value)))
        return names

    def diagnose(self, instance: BlockInstance, message: str) -> None:
        logger.warning("Generation diagnostic for %s (%s): %s",
                       instance.block_id, instance.kind_id, message)
        self.diagnostics.append(GenerationDiagnostic(instance.block_id, instance.kind_id, message))

    def declare_variable(self, raw_name: str) -> str:
        name = sanitize_identifier(raw_name)
        if name not in self.variables:
            self.variables.append(name)
        return name

    def unique_name(self, base: str) -> str:
        """Fresh generated name that shadows no user variable, procedure or helper."""
        count = self._name_counts.get(base, 0)
        while True:
            count += 1
            candidate = base if count == 1 else f"{base}{count}"
            if candidate not in self._reserved and candidate not in self.helpers:
                break
        self._name_counts[base] = count
        return candidate

    def provide_helper(self, name: str, code: str) -> str:
        """Register a helper function once; ``code`` is its full definition."""
        if name not in self.helpers:
            self.helpers[name] = code
        return name

    def _resolve(self, instance: BlockInstance) -> Optional[tuple]:
        kind = self.registry.find_kind(instance.kind_id)
        if kind is None:
            self.diagnose(instance, f"Unknown block kind {instance.kind_id!r}")
            return None
        fn = self.generators.get(instance.kind_id)
        if fn is None:
            self.diagnose(instance, f"No generator registered for {instance.kind_id!r}")
            return None
        return kind, fn

    def value_fragment(self, block_id: str) -> Optional[GeneratedFragment]:
        instance = self.graph.get(block_id)
        resolved = self._resolve(instance)
        if resolved is None:
            return None
        kind, fn = resolved
        result = fn(BlockContext(self, instance, kind))
        if isinstance(result, str):
            return GeneratedFragment(result, Precedence.NONE)
        return result

    def statement_text(self, block_id: str) -> str:
        instance = self.graph.get(block_id)
        resolved = self._resolve(instance)
        if resolved is None:
            return ''
        kind, fn = resolved
        result = fn(BlockContext(self, instance, kind))
        if isinstance(result, GeneratedFragment):
            return result.code + ';\n'
        return result

    def chain_text(self, head_id: Optional[str]) -> str:
        return ''.join(self.statement_text(bid) for bid in self.graph.chain(head_id))


class BlockContext:
    """What a per-kind generator function sees of the block it is generating."""

    def __init__(self, run: GenerationContext, instance: BlockInstance, kind: BlockKind):
        self.run = run
        self.instance = instance
        self.kind = kind

    @property
    def block_id(self) -> str:
        return self.instance.block_id

    def field(self, name: str) -> Any:
        return self.instance.fields.get(name, self.kind.get_field(name).default)

    def has_value(self, socket_name: str) -> bool:
        return socket_name in self.instance.sockets

    def value(self, socket_name: str, required: Precedence = Precedence.NONE) -> str:
        """Expression text for a socket, parenthesized if it binds looser than ``required``."""
        binding = self.instance.sockets.get(socket_name)
        if binding is not None:
            if binding.is_block:
                fragment = self.run.value_fragment(binding.block_id)
                if fragment is not None and fragment.code:
                    return fragment.wrapped_for(required)
            else:
                return literal_fragment(binding.literal).wrapped_for(required)
        socket = self.kind.get_socket(socket_name)
        if socket is None or socket.default_code is None:
            return ''
        return socket.default_code

    def statements(self, slot_name: str) -> str:
        """The slot's chain, indented one level."""
        body = self.run.chain_text(self.instance.slots.get(slot_name))
        return indent_lines(body, self.run.indent)

    def variable(self, field_name: str = 'VAR') -> str:
        return self.run.declare_variable(str(self.field(field_name)))

    def identifier(self, field_name: str) -> str:
        return sanitize_identifier(str(self.field(field_name)))


def indent_lines(text: str, prefix: str) -> str:
    return ''.join(prefix + line if line.strip() else line
                   for line in text.splitlines(keepends=True))


# =============================================================================
# Generator
# =============================================================================

class CodeGenerator:
    """Graph → p5.js text using a kind-id → generator-function table."""

    def __init__(self, generators: Optional[Dict[str, GeneratorFn]] = None, indent: str = '  '):
        if generators is None:
            from .p5_generators import P5_GENERATORS
            generators = P5_GENERATORS
        self.generators = generators
        self.indent = indent

    def generate(self, graph: ProgramGraph) -> GenerationResult:
        run = GenerationContext(graph, self.generators, self.indent)

        callbacks = []
        seen_callbacks: Dict[str, str] = {}
        for entry_id in graph.entry_points:
            instance = graph.get(entry_id)
            text = run.statement_text(entry_id)
            if not text:
                continue
            kind = run.registry.find_kind(instance.kind_id)
            name = kind.callback if kind.callback else sanitize_identifier(
                str(instance.fields.get(kind.callback_field, '')))
            if name in seen_callbacks:
                run.diagnose(instance, f"Callback {name}() is also defined by block "
                                       f"{seen_callbacks[name]!r}; the later definition wins")
            seen_callbacks.setdefault(name, entry_id)
            callbacks.append(text)

        sections = []
        if run.variables:
            sections.append(f"var {', '.join(run.variables)};\n")
        sections.extend(run.helpers.values())
        sections.extend(callbacks)
        code = '\n'.join(sections)

        logger.debug("Generated %d callbacks, %d diagnostics", len(callbacks), len(run.diagnostics))
        return GenerationResult(code, run.diagnostics)


def missing_generators(registry: BlockRegistry, generators: Dict[str, GeneratorFn]) -> List[str]:
    """Registered kinds that have no entry in ``generators``."""
    return sorted(k for k in registry.kind_ids() if k not in generators)


_default_generator: Optional[CodeGenerator] = None


def generate_code(graph: ProgramGraph) -> GenerationResult:
    """Generate with the built-in table."""
    global _default_generator
    if _default_generator is None:
        _default_generator = CodeGenerator()
    return _default_generator.generate(graph)
