"""Error taxonomy for the spec-generation pipeline.

Every failure the pipeline can report to a caller is one of the classes
below. Each carries a ``category`` string and serializes itself with
``to_dict()`` so the workflow layer can hand a structured error back to the
MCP client without inspecting exception internals.
"""

from __future__ import annotations

import errno
from typing import Any, Dict, List, Optional


class SpecGenError(Exception):
    """Base class for all pipeline errors."""

    category = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {"category": self.category, "message": self.message}


class ParseError(SpecGenError):
    """Input document is oversized or unreadable."""

    category = "parse"

    def __init__(self, message: str, line: Optional[int] = None):
        super().__init__(message)
        self.line = line

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.line is not None:
            data["line"] = self.line
        return data


class ExtractionError(SpecGenError):
    """No usable structure was found for one extraction phase."""

    category = "extraction"
    PHASES = ("constitution", "features", "plans")

    def __init__(self, message: str, phase: str, details: Optional[Dict[str, Any]] = None):
        if phase not in self.PHASES:
            raise ValueError(f"Unknown extraction phase: {phase}")
        super().__init__(message)
        self.phase = phase
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["phase"] = self.phase
        if self.details:
            data["details"] = dict(self.details)
        return data


class TemplateError(SpecGenError):
    """Template is missing, malformed, or lacks data for its placeholders."""

    category = "template"

    def __init__(
        self,
        message: str,
        template_name: Optional[str] = None,
        missing_variables: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.template_name = template_name
        self.missing_variables = list(missing_variables or [])

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.template_name:
            data["template"] = self.template_name
        if self.missing_variables:
            data["missing_variables"] = list(self.missing_variables)
        return data


class RouteError(SpecGenError):
    """Route argument is invalid, or no route is known for the project."""

    category = "route"


class SecurityError(SpecGenError):
    """Path is malformed or escapes the allowed workspace roots."""

    category = "security"


class FileSystemError(SpecGenError):
    """Underlying I/O failure."""

    category = "filesystem"

    def __init__(self, message: str, path: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        self.path = path
        self.code = code

    @classmethod
    def from_os_error(cls, error: OSError, path: Any, action: str) -> "FileSystemError":
        """Wrap an ``OSError`` raised while performing ``action`` on ``path``."""
        code = None
        if error.errno is not None:
            code = errno.errorcode.get(error.errno, str(error.errno))
        reason = error.strerror or str(error)
        return cls(f"Failed to {action} {path}: {reason}", path=str(path), code=code)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.path:
            data["path"] = self.path
        if self.code:
            data["code"] = self.code
        return data


class StateNotFoundError(FileSystemError):
    """No workflow state has been recorded for the root yet."""

    category = "state-missing"
