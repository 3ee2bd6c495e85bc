"""Spec generation from reverse-engineering documents."""

from .errors import (
    ExtractionError,
    FileSystemError,
    ParseError,
    RouteError,
    SecurityError,
    SpecGenError,
    StateNotFoundError,
    TemplateError,
)
from .workflow import WorkflowManager

__all__ = [
    "WorkflowManager",
    "SpecGenError",
    "ParseError",
    "ExtractionError",
    "TemplateError",
    "RouteError",
    "SecurityError",
    "FileSystemError",
    "StateNotFoundError",
]
