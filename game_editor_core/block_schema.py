"""
Block schema: the typed shape of every block kind.

A block kind declares:
    - value sockets:    typed inputs that hold a literal or a nested value block
    - statement slots:  nested bodies holding an ordered chain of statement blocks
    - literal fields:   inline editable values (numbers, text, colours, dropdowns)
    - an output type    (value kinds only)

Every kind has exactly one shape:

    ENTRY      top-level callback (setup, draw, key pressed, ...). Statement
               semantics, but it never has a previous/next connection.
    STATEMENT  previous/next connections, no output.
    VALUE      an output, no previous/next connections.
"""

import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from .exceptions import StructureError, TypeMismatch


HEX_COLOUR_RE = re.compile(r'^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$')


class ValueType(Enum):
    """Type tags carried by sockets and value-kind outputs."""
    NUMBER  = "Number"
    BOOLEAN = "Boolean"
    STRING  = "String"
    COLOR   = "Colour"
    VECTOR  = "Vector"
    ANY     = "Any"

    def accepts(self, other: 'ValueType') -> bool:
        """Check whether a value of type ``other`` may be plugged into this type."""
        if self is ValueType.ANY or other is ValueType.ANY:
            return True
        return self is other


VALUE_TYPE_MAP: Dict[str, ValueType] = {t.value.lower(): t for t in ValueType}
VALUE_TYPE_MAP['color'] = ValueType.COLOR


def resolve_value_type(name: Optional[str]) -> ValueType:
    """Resolve a type tag (``"Number"``, ``"colour"``, ``None``...) to a ValueType."""
    if not name:
        return ValueType.ANY
    try:
        return VALUE_TYPE_MAP[name.lower().strip()]
    except KeyError:
        raise TypeMismatch(f"Unknown value type tag: {name!r}", expected="type tag", actual=name)


class BlockShape(Enum):
    ENTRY     = "entry"
    STATEMENT = "statement"
    VALUE     = "value"


class FieldType(Enum):
    NUMBER   = "number"
    TEXT     = "text"
    DROPDOWN = "dropdown"
    COLOR    = "colour"
    VARIABLE = "variable"


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


@dataclass
class ValueSocket:
    """A typed value input on a block."""
    name: str
    value_type: ValueType = ValueType.ANY
    default_code: Optional[str] = None   # emitted when unbound; None = omit the argument
    label: str = ""

    @property
    def is_optional(self) -> bool:
        return self.default_code is None

    def validate_literal(self, value: Any) -> Any:
        """Check a literal against this socket's type and return it normalised."""
        expected = self.value_type
        if expected is ValueType.ANY:
            if is_number(value) or isinstance(value, (bool, str)):
                return value
        elif expected is ValueType.NUMBER:
            if is_number(value):
                return value
        elif expected is ValueType.BOOLEAN:
            if isinstance(value, bool):
                return value
        elif expected is ValueType.STRING:
            if isinstance(value, str):
                return value
        elif expected is ValueType.COLOR:
            if isinstance(value, str) and HEX_COLOUR_RE.match(value):
                return value
        elif expected is ValueType.VECTOR:
            if (isinstance(value, (list, tuple)) and 2 <= len(value) <= 3
                    and all(is_number(v) for v in value)):
                return list(value)
        raise TypeMismatch(
            f"Socket {self.name!r} expects {expected.value}, got literal {value!r}",
            expected=expected.value,
            actual=type(value).__name__,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'type': self.value_type.value,
            'default': self.default_code,
            'label': self.label,
        }


@dataclass
class StatementSlot:
    """A nested statement body (loop body, event handler body, ...)."""
    name: str
    label: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'label': self.label}


@dataclass
class LiteralField:
    """An inline editable value on a block."""
    name: str
    field_type: FieldType = FieldType.TEXT
    default: Any = ""
    options: List[str] = field(default_factory=list)

    def coerce(self, value: Any) -> Any:
        """Validate a field value and return it in canonical form."""
        ft = self.field_type
        if ft is FieldType.NUMBER:
            if is_number(value):
                return value
            if isinstance(value, str):
                try:
                    number = float(value)
                except ValueError:
                    pass
                else:
                    if math.isfinite(number):
                        return int(number) if number.is_integer() and '.' not in value else number
        elif ft is FieldType.DROPDOWN:
            if value in self.options:
                return value
            raise TypeMismatch(
                f"Field {self.name!r} must be one of {self.options}, got {value!r}",
                expected='|'.join(self.options),
                actual=str(value),
            )
        elif ft is FieldType.COLOR:
            if isinstance(value, str) and HEX_COLOUR_RE.match(value):
                return value
        elif ft is FieldType.VARIABLE:
            if isinstance(value, str) and value.strip():
                return value.strip()
        elif isinstance(value, str):
            return value
        raise TypeMismatch(
            f"Field {self.name!r} expects a {ft.value} value, got {value!r}",
            expected=ft.value,
            actual=type(value).__name__,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {'name': self.name, 'type': self.field_type.value, 'default': self.default}
        if self.options:
            data['options'] = list(self.options)
        return data


@dataclass
class BlockKind:
    """A registered block kind: one operation's sockets, slots, fields and output."""
    kind_id: str
    shape: BlockShape
    sockets: List[ValueSocket] = field(default_factory=list)
    slots: List[StatementSlot] = field(default_factory=list)
    fields: List[LiteralField] = field(default_factory=list)
    output_type: Optional[ValueType] = None
    category: str = "Misc"
    colour: int = 0
    tooltip: str = ""
    callback: Optional[str] = None        # entry points: generated callback name
    callback_field: Optional[str] = None  # entry points: take the callback name from this field

    def __post_init__(self):
        if self.shape is BlockShape.VALUE and self.output_type is None:
            raise StructureError(f"Value kind {self.kind_id!r} must declare an output type")
        if self.shape is not BlockShape.VALUE and self.output_type is not None:
            raise StructureError(f"Statement kind {self.kind_id!r} cannot declare an output type")
        if self.shape is BlockShape.ENTRY and not (self.callback or self.callback_field):
            raise StructureError(f"Entry point {self.kind_id!r} needs a callback name")
        names = ([s.name for s in self.sockets] + [s.name for s in self.slots]
                 + [f.name for f in self.fields])
        if len(names) != len(set(names)):
            raise StructureError(f"Kind {self.kind_id!r} has duplicate socket/slot/field names")

    @property
    def is_value(self) -> bool:
        return self.shape is BlockShape.VALUE

    @property
    def is_statement(self) -> bool:
        """True for anything with statement semantics, entry points included."""
        return self.shape is not BlockShape.VALUE

    @property
    def is_entry_point(self) -> bool:
        return self.shape is BlockShape.ENTRY

    @property
    def has_previous_next(self) -> bool:
        return self.shape is BlockShape.STATEMENT

    def get_socket(self, name: str) -> Optional[ValueSocket]:
        for socket in self.sockets:
            if socket.name == name:
                return socket
        return None

    def get_slot(self, name: str) -> Optional[StatementSlot]:
        for slot in self.slots:
            if slot.name == name:
                return slot
        return None

    def get_field(self, name: str) -> Optional[LiteralField]:
        for literal in self.fields:
            if literal.name == name:
                return literal
        return None

    def socket_names(self) -> List[str]:
        return [s.name for s in self.sockets]

    def slot_names(self) -> List[str]:
        return [s.name for s in self.slots]

    def resolve_fields(self, values: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Merge ``values`` over the field defaults, validating each one."""
        values = dict(values or {})
        unknown = [name for name in values if self.get_field(name) is None]
        if unknown:
            raise StructureError(
                f"Kind {self.kind_id!r} has no field(s) {sorted(unknown)}",
                {'kind': self.kind_id, 'fields': sorted(unknown)},
            )
        resolved = {}
        for literal in self.fields:
            if literal.name in values:
                resolved[literal.name] = literal.coerce(values[literal.name])
            else:
                resolved[literal.name] = literal.default
        return resolved

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind_id,
            'shape': self.shape.value,
            'category': self.category,
            'colour': self.colour,
            'tooltip': self.tooltip,
            'output': self.output_type.value if self.output_type else None,
            'sockets': [s.to_dict() for s in self.sockets],
            'slots': [s.to_dict() for s in self.slots],
            'fields': [f.to_dict() for f in self.fields],
            'callback': self.callback,
        }


# =============================================================================
# Shorthand constructors used by the catalog
# =============================================================================

def number_socket(name: str, default: Optional[str] = "0", label: str = "") -> ValueSocket:
    return ValueSocket(name, ValueType.NUMBER, default, label or name.lower())


def dropdown(name: str, options: Sequence[str], default: Optional[str] = None) -> LiteralField:
    options = list(options)
    return LiteralField(name, FieldType.DROPDOWN, default if default is not None else options[0], options)
