"""
Error taxonomy for the game editor core.

Hard errors abort a command before anything is committed and are reported
verbatim to the caller. ``GenerationDiagnostic`` is the one soft failure: it is
collected while generating code and never raised.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


class EditorError(Exception):
    """Base exception for all editor-core errors."""

    error_kind = "EditorError"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'errorKind': self.error_kind,
            'error': self.message,
            'details': self.details,
        }


class UnknownKind(EditorError):
    """Raised when a block kind id is not in the registry."""

    error_kind = "UnknownKind"

    def __init__(self, kind_id: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Unknown block kind: {kind_id!r}", details)
        self.kind_id = kind_id


class TypeMismatch(EditorError):
    """Raised when a value's output type does not fit a socket's declared type."""

    error_kind = "TypeMismatch"

    def __init__(self, message: str, expected: str = "", actual: str = "",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.expected = expected
        self.actual = actual


class StructureError(EditorError):
    """Raised for malformed, cyclic or otherwise invalid graph structure."""

    error_kind = "StructureError"


class AddressNotFound(EditorError):
    """Raised when a str_replace/patch target (or a looked-up record) does not exist."""

    error_kind = "AddressNotFound"

    def __init__(self, message: str, address: Any = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.address = address


class Busy(EditorError):
    """Raised when a command arrives while another is in flight on the same session."""

    error_kind = "Busy"

    def __init__(self, session_id: str = ""):
        super().__init__(
            f"Session {session_id or '<unbound>'} is busy: a command is already in flight",
            {'session_id': session_id},
        )
        self.session_id = session_id


@dataclass(frozen=True)
class GenerationDiagnostic:
    """Non-fatal problem found while generating code for one block instance."""
    block_id: str
    kind_id: str
    message: str

    error_kind = "GenerationDiagnostic"

    def to_dict(self) -> Dict[str, str]:
        return {
            'blockId': self.block_id,
            'kind': self.kind_id,
            'message': self.message,
        }
