"""Error kinds raised by the nested mutation engine.

Every error carries the field path of the branch that produced it so the
request layer can point the client at the offending part of its input.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Sequence, Tuple, Union

PathItem = Union[str, int]

__all__ = [
    'ErrorKind',
    'NestedMutationError',
    'ConfigurationError',
    'ValidationError',
    'DecodeError',
    'StatementError',
    'MissingRowError',
    'format_path',
]


class ErrorKind(str, Enum):
    CONFIGURATION = 'configuration'
    VALIDATION = 'validation'
    DECODE = 'decode'
    STATEMENT = 'statement'


def format_path(path: Sequence[PathItem]) -> str:
    """Render a path tuple as ``input.childrenByParentId[1].create``."""
    out = ''
    for item in path:
        if isinstance(item, int):
            out += f'[{item}]'
        elif out:
            out += f'.{item}'
        else:
            out = str(item)
    return out


class NestedMutationError(Exception):
    """Base class for all engine errors."""

    kind: ClassVar[ErrorKind] = ErrorKind.VALIDATION

    def __init__(self, message: str, *, path: Sequence[PathItem] = ()):
        super().__init__(message)
        self.message = message
        self.path: Tuple[PathItem, ...] = tuple(path)

    @property
    def field_path(self) -> str:
        return format_path(self.path)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'message': self.message,
            'kind': self.kind.value,
            'path': list(self.path),
        }

    def __str__(self) -> str:
        if self.path:
            return f"{self.message} (at {self.field_path})"
        return self.message


class ConfigurationError(NestedMutationError):
    """Malformed metadata or statement construction; a programmer error."""

    kind = ErrorKind.CONFIGURATION


class ValidationError(NestedMutationError, ValueError):
    """The client input cannot be turned into a valid operation tree."""

    kind = ErrorKind.VALIDATION


class DecodeError(ValidationError):
    """An opaque id could not be decoded for the expected table."""

    kind = ErrorKind.DECODE


class StatementError(NestedMutationError):
    """A statement failed against the database.

    ``statement`` holds the SQL text (parameters are never inlined) and
    ``__cause__`` the driver error when there is one.
    """

    kind = ErrorKind.STATEMENT

    def __init__(self, message: str, *, path: Sequence[PathItem] = (), statement: Optional[str] = None):
        super().__init__(message, path=path)
        self.statement = statement


class MissingRowError(StatementError):
    """The row addressed by a connect/update/delete does not exist."""
