"""wlp4c.errors

Error categories shared by every compilation stage.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    """Which stage (or which rule family) rejected the program"""
    LEXICAL = "lexical"
    SYNTAX = "syntax"
    DECLARATION = "declaration"
    SCOPE = "scope"
    TYPE = "type"
    INTERNAL = "internal"


class CompileError(Exception):
    """Base class for all stage errors.

    Every stage fails fast: the first problem found is raised and the
    pipeline stops. ``kind`` tells the driver how to classify it.
    """
    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, kind: ErrorKind = None):
        self.message = message
        if kind is not None:
            self.kind = kind
        super().__init__(message)
