"""Workspace path validation.

Every directory a caller hands to the pipeline, and every file path the
pipeline builds underneath it, goes through :class:`PathValidator` before any
file system access. Paths are resolved (following symlinks) and must land on
an allowed root or one of its descendants.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Iterable, List, Optional

from .errors import SecurityError

SHELL_METACHARACTERS = re.compile(r"[;&|`$(){}\[\]<>\\!\r\n\x00]")


class PathValidator:
    """Resolve caller paths and reject anything outside the allowed roots."""

    def __init__(self, allowed_roots: Optional[Iterable[os.PathLike | str]] = None):
        roots = list(allowed_roots) if allowed_roots is not None else [Path.cwd()]
        if not roots:
            raise ValueError("PathValidator needs at least one allowed root")
        self.allowed_roots: List[Path] = [Path(root).expanduser().resolve() for root in roots]

    def validate(self, path: object) -> Path:
        """Return the canonical form of ``path`` or raise ``SecurityError``."""
        if isinstance(path, Path):
            path = str(path)
        if not isinstance(path, str):
            raise SecurityError(f"Invalid path: expected string, got {type(path).__name__}")
        if not path.strip():
            raise SecurityError("Invalid path: empty")
        if SHELL_METACHARACTERS.search(path):
            raise SecurityError("Invalid path: contains shell metacharacters")

        candidate = Path(path).expanduser()
        try:
            resolved = candidate.resolve()
        except (OSError, RuntimeError) as e:
            # RuntimeError: symlink loop on older interpreters
            raise SecurityError(f"Invalid path: cannot resolve '{path}': {e}") from e

        if not self._is_allowed(resolved):
            allowed = ", ".join(str(root) for root in self.allowed_roots)
            raise SecurityError(
                f"Directory access denied: '{path}' is outside allowed workspace. Allowed paths: {allowed}"
            )
        return resolved

    def validate_child(self, directory: os.PathLike | str, relative: os.PathLike | str) -> Path:
        """Validate a file path built under ``directory``."""
        base = self.validate(str(directory))
        relative_text = str(relative)
        if not relative_text.strip():
            raise SecurityError("Invalid file name: empty")
        if SHELL_METACHARACTERS.search(relative_text):
            raise SecurityError("Invalid file name: contains shell metacharacters")
        if Path(relative_text).is_absolute():
            raise SecurityError(f"File path must be relative: '{relative_text}'")

        resolved = (base / relative_text).resolve()
        if resolved != base and base not in resolved.parents:
            raise SecurityError(f"File path escapes directory: '{relative_text}'")
        if not self._is_allowed(resolved):
            raise SecurityError(f"File path escapes workspace: '{relative_text}'")
        return resolved

    def _is_allowed(self, resolved: Path) -> bool:
        return any(resolved == root or root in resolved.parents for root in self.allowed_roots)
