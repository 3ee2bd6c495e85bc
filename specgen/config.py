"""Environment-driven settings for the spec generator."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

DEFAULT_MAX_DOCUMENT_BYTES = 10 * 1024 * 1024

# Fixed locations shared with the sibling workflow stages.
SPECIFY_DIR = ".specify"
MEMORY_DIR = "memory"
SPECS_DIR = "specs"
TEMPLATES_DIR = "templates"
STATE_FILE = ".specgen-state.json"
INPUT_DIR = Path("docs") / "reverse-engineering"
FUNCTIONAL_SPEC_FILE = INPUT_DIR / "functional-specification.md"
TECH_DEBT_FILE = INPUT_DIR / "technical-debt-analysis.md"

ROUTES = ("agnostic", "prescriptive")
ROUTE_ALIASES = {
    "greenfield": "agnostic",
    "brownfield": "prescriptive",
}


def normalize_route(route: Optional[str]) -> Optional[str]:
    """Map a caller-supplied route onto ``agnostic``/``prescriptive``."""
    if route is None:
        return None
    if not isinstance(route, str):
        raise ValueError(f"Invalid route type: expected string, got {type(route).__name__}")
    value = route.strip().lower()
    value = ROUTE_ALIASES.get(value, value)
    if value not in ROUTES:
        raise ValueError(f"Invalid route: '{route}'. Must be 'agnostic' or 'prescriptive'")
    return value


@dataclass(slots=True)
class Settings:
    """Runtime configuration read from ``SPECGEN_*`` environment variables."""

    project_root: Optional[Path] = None
    allowed_roots: List[Path] = field(default_factory=list)
    template_dir: Optional[Path] = None
    max_document_bytes: int = DEFAULT_MAX_DOCUMENT_BYTES
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the current process environment."""
        project_root = os.getenv("SPECGEN_PROJECT_ROOT")
        allowed = os.getenv("SPECGEN_ALLOWED_ROOTS", "")
        template_dir = os.getenv("SPECGEN_TEMPLATE_DIR")
        max_bytes = os.getenv("SPECGEN_MAX_DOCUMENT_BYTES")
        log_file = os.getenv("SPECGEN_LOG_FILE")

        try:
            max_document_bytes = int(max_bytes) if max_bytes else DEFAULT_MAX_DOCUMENT_BYTES
        except ValueError:
            raise ValueError(
                f"SPECGEN_MAX_DOCUMENT_BYTES must be an integer, got '{max_bytes}'"
            ) from None
        if max_document_bytes <= 0:
            raise ValueError("SPECGEN_MAX_DOCUMENT_BYTES must be positive")

        return cls(
            project_root=Path(project_root).expanduser() if project_root else None,
            allowed_roots=[Path(p).expanduser() for p in allowed.split(os.pathsep) if p.strip()],
            template_dir=Path(template_dir).expanduser() if template_dir else None,
            max_document_bytes=max_document_bytes,
            log_level=os.getenv("SPECGEN_LOG_LEVEL", "INFO").upper(),
            log_file=Path(log_file).expanduser() if log_file else None,
        )

    def effective_allowed_roots(self) -> List[Path]:
        """Allowed workspace roots, defaulting to the working directory."""
        if self.allowed_roots:
            return list(self.allowed_roots)
        return [Path.cwd()]
