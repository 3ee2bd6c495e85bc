"""Workspace layout and durable file writes.

All paths handed out by :class:`Workspace` have been through the
:class:`~specgen.security.PathValidator`. Writes go through a temporary
sibling and ``os.replace`` so readers only ever see the old or the new
content of a file.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import re
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Collection, Iterable, List, Optional, Sequence, Union

from .config import (
    FUNCTIONAL_SPEC_FILE,
    MEMORY_DIR,
    SPECIFY_DIR,
    SPECS_DIR,
    STATE_FILE,
    TECH_DEBT_FILE,
    TEMPLATES_DIR,
)
from .errors import FileSystemError, ParseError, SecurityError
from .models import Feature, GeneratedArtifact
from .security import PathValidator
from .specgen_logging import log_artifact_event, log_performance, observability_hooks

logger = logging.getLogger("specgen.workspace")

PathLike = Union[str, "os.PathLike[str]"]

FEATURE_DIR_PATTERN = re.compile(r"^\d{3}-[a-z0-9]+(?:-[a-z0-9]+)*$")


def _fsync_directory(path: Path) -> None:
    """Flush directory metadata after a rename where the platform allows it."""
    if os.name == "nt":
        return

    flags = os.O_RDONLY
    if hasattr(os, "O_DIRECTORY"):
        flags |= os.O_DIRECTORY

    try:
        dir_fd = os.open(path, flags)
    except OSError:
        return

    try:
        os.fsync(dir_fd)
    except OSError:
        return
    finally:
        os.close(dir_fd)


def _stage(target: Path, data: bytes) -> Path:
    """Write ``data`` to a fresh temporary sibling of ``target``."""
    fd, temp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent))
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise
    return temp_path


def write_atomic_sync(path: PathLike, content: Union[str, bytes]) -> None:
    """Replace ``path`` with ``content`` in one rename.

    The temporary file is removed on any failure; ``OSError`` is re-raised as
    :class:`FileSystemError`.
    """
    target = Path(path)
    data = content.encode("utf-8") if isinstance(content, str) else content
    temp_path: Optional[Path] = None
    try:
        temp_path = _stage(target, data)
        os.replace(temp_path, target)
        temp_path = None
        _fsync_directory(target.parent)
    except OSError as e:
        raise FileSystemError.from_os_error(e, target, "write") from e
    finally:
        if temp_path is not None:
            with contextlib.suppress(OSError):
                temp_path.unlink(missing_ok=True)


async def write_atomic(path: PathLike, content: Union[str, bytes]) -> None:
    await asyncio.to_thread(write_atomic_sync, path, content)


def read_document_sync(path: Path, max_bytes: int) -> str:
    """Read a UTF-8 input document, refusing anything over ``max_bytes``."""
    try:
        size = path.stat().st_size
        if size > max_bytes:
            raise ParseError(f"Document too large: {path} is {size} bytes, limit is {max_bytes} bytes")
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ParseError(f"Document is not valid UTF-8: {path}") from e
    except OSError as e:
        raise FileSystemError.from_os_error(e, path, "read") from e


@dataclass(slots=True)
class _StagedWrite:
    artifact: GeneratedArtifact
    target: Path
    temp_path: Path
    previous: Optional[bytes]


@dataclass(slots=True)
class _Removal:
    target: Path
    backup: Path


@dataclass
class ArtifactBatch:
    """Artifacts renamed into place, with what is needed to undo them.

    Removed paths wait in ``backup_dir`` until :meth:`finalize` deletes them
    or :meth:`rollback` moves them back.
    """

    staged: List[_StagedWrite] = field(default_factory=list)
    committed: List[_StagedWrite] = field(default_factory=list)
    removed: List[_Removal] = field(default_factory=list)
    created_dirs: List[Path] = field(default_factory=list)
    backup_dir: Optional[Path] = None

    @property
    def paths(self) -> List[Path]:
        return [entry.target for entry in self.committed]

    @property
    def removed_paths(self) -> List[Path]:
        return [entry.target for entry in self.removed]

    def finalize(self) -> None:
        if self.backup_dir is None:
            return
        try:
            shutil.rmtree(self.backup_dir)
        except OSError as e:
            logger.warning(f"Could not delete backup directory {self.backup_dir}: {e}")
        self.backup_dir = None

    def rollback(self) -> None:
        for entry in self.staged:
            if not any(entry is done for done in self.committed):
                with contextlib.suppress(OSError):
                    entry.temp_path.unlink(missing_ok=True)

        for entry in reversed(self.committed):
            with contextlib.suppress(OSError, FileSystemError):
                if entry.previous is None:
                    entry.target.unlink(missing_ok=True)
                else:
                    write_atomic_sync(entry.target, entry.previous)

        for entry in reversed(self.removed):
            try:
                os.replace(entry.backup, entry.target)
            except OSError as e:
                logger.error(f"Could not restore {entry.target} from {entry.backup}: {e}")

        for directory in reversed(self.created_dirs):
            with contextlib.suppress(OSError):
                directory.rmdir()

        if self.backup_dir is not None:
            with contextlib.suppress(OSError):
                self.backup_dir.rmdir()
            self.backup_dir = None

        logger.warning(
            f"Rolled back {len(self.committed)} committed, {len(self.staged) - len(self.committed)} staged "
            f"and {len(self.removed)} removed artifacts"
        )


class Workspace:
    """Directory layout of one project root."""

    def __init__(self, root: PathLike, validator: Optional[PathValidator] = None):
        self.validator = validator or PathValidator()
        self.root = self.validator.validate(root)

        self.base_dir = self.root / SPECIFY_DIR
        self.memory_dir = self.base_dir / MEMORY_DIR
        self.specs_dir = self.base_dir / SPECS_DIR
        self.templates_dir = self.base_dir / TEMPLATES_DIR

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def child(self, relative: PathLike) -> Path:
        """Validated path of ``relative`` under the root."""
        return self.validator.validate_child(self.root, relative)

    @property
    def constitution_path(self) -> Path:
        return self.child(Path(SPECIFY_DIR) / MEMORY_DIR / "constitution.md")

    @property
    def state_path(self) -> Path:
        return self.child(STATE_FILE)

    @property
    def functional_spec_path(self) -> Path:
        return self.child(FUNCTIONAL_SPEC_FILE)

    @property
    def tech_debt_path(self) -> Path:
        return self.child(TECH_DEBT_FILE)

    def feature_dir(self, feature: Feature) -> Path:
        return self.child(Path(SPECIFY_DIR) / SPECS_DIR / feature.directory_name)

    def spec_path(self, feature: Feature) -> Path:
        return self.child(Path(SPECIFY_DIR) / SPECS_DIR / feature.directory_name / "spec.md")

    def plan_path(self, feature: Feature) -> Path:
        return self.child(Path(SPECIFY_DIR) / SPECS_DIR / feature.directory_name / "plan.md")

    def relative(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def _target(self, path: PathLike) -> Path:
        candidate = Path(path)
        if candidate.is_absolute():
            try:
                candidate = candidate.relative_to(self.root)
            except ValueError:
                raise SecurityError(f"Artifact path is outside the workspace: '{path}'") from None
        return self.child(candidate)

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def initialize_layout_sync(self) -> List[Path]:
        """Create ``.specify/``, its ``memory/`` and ``specs/``; return the ones made."""
        created = []
        for directory in (self.base_dir, self.memory_dir, self.specs_dir):
            if directory.is_dir():
                continue
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise FileSystemError.from_os_error(e, directory, "create directory") from e
            created.append(directory)

        if created:
            logger.info(f"Created workspace layout under {self.base_dir}")
            observability_hooks.log_workflow_event(
                "layout_initialized",
                root=str(self.root),
                created=[str(path) for path in created],
            )
        return created

    async def initialize_layout(self) -> List[Path]:
        return await asyncio.to_thread(self.initialize_layout_sync)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def read_document(self, path: Path, max_bytes: int) -> str:
        return await asyncio.to_thread(read_document_sync, path, max_bytes)

    def stale_outputs_sync(self, features: Sequence[Feature], planned_ids: Collection[str]) -> List[Path]:
        """Outputs of earlier runs that the current feature set no longer produces.

        That is every generated ``NNN-<slug>`` directory under ``specs/`` that belongs to no
        current feature, and the ``plan.md`` of every current feature outside
        ``planned_ids``.
        """
        current = {feature.directory_name for feature in features}
        stale: List[Path] = []
        try:
            entries = sorted(self.specs_dir.iterdir()) if self.specs_dir.is_dir() else []
        except OSError as e:
            raise FileSystemError.from_os_error(e, self.specs_dir, "list") from e

        for entry in entries:
            if entry.is_dir() and FEATURE_DIR_PATTERN.match(entry.name) and entry.name not in current:
                stale.append(self.child(Path(SPECIFY_DIR) / SPECS_DIR / entry.name))

        for feature in features:
            if feature.id in planned_ids:
                continue
            plan = self.plan_path(feature)
            if plan.is_file():
                stale.append(plan)
        return stale

    async def stale_outputs(self, features: Sequence[Feature], planned_ids: Collection[str]) -> List[Path]:
        return await asyncio.to_thread(self.stale_outputs_sync, features, planned_ids)

    @log_performance("commit_artifacts")
    def commit_artifacts_sync(
        self,
        artifacts: Iterable[GeneratedArtifact],
        removals: Iterable[PathLike] = (),
    ) -> ArtifactBatch:
        """Write every artifact and remove every path in ``removals``, or change nothing.

        All contents are staged to temporary siblings before the first rename.
        Removed paths are moved into a backup directory under ``.specify/``
        rather than deleted. If anything fails, staged files are removed,
        already-renamed targets get their previous content back (or are
        deleted if they did not exist before) and removed paths are moved back.

        The returned batch still holds the backups: call
        :meth:`ArtifactBatch.finalize` to drop them or
        :meth:`ArtifactBatch.rollback` to undo the whole batch.
        """
        targets = [(artifact, self._target(artifact.path)) for artifact in artifacts]
        doomed = [self._target(path) for path in removals]
        batch = ArtifactBatch()
        current: Optional[Path] = None
        action = "stage"

        try:
            for artifact, target in targets:
                current = target
                for parent in reversed(target.parents):
                    if parent != self.root and self.root in parent.parents and not parent.exists():
                        try:
                            parent.mkdir()
                        except FileExistsError:
                            # created by a concurrent run on the same root
                            continue
                        batch.created_dirs.append(parent)
                previous = target.read_bytes() if target.is_file() else None
                temp_path = _stage(target, artifact.content.encode("utf-8"))
                batch.staged.append(_StagedWrite(artifact, target, temp_path, previous))

            action = "remove"
            for number, target in enumerate(doomed):
                current = target
                if not target.exists():
                    continue
                if batch.backup_dir is None:
                    batch.backup_dir = Path(tempfile.mkdtemp(prefix=".removed-", dir=str(self.base_dir)))
                backup = batch.backup_dir / f"{number}-{target.name}"
                os.replace(target, backup)
                batch.removed.append(_Removal(target, backup))

            action = "replace"
            for entry in batch.staged:
                current = entry.target
                os.replace(entry.temp_path, entry.target)
                batch.committed.append(entry)

            for directory in {entry.target.parent for entry in batch.committed + batch.removed}:
                _fsync_directory(directory)
        except OSError as e:
            batch.rollback()
            raise FileSystemError.from_os_error(e, current, action) from e

        for entry in batch.committed:
            log_artifact_event("written", entry.artifact.kind, str(entry.target), checksum=entry.artifact.checksum)
        for path in batch.removed_paths:
            log_artifact_event("removed", "directory" if path.name != "plan.md" else "plan", str(path))
        return batch

    def write_artifacts_sync(
        self,
        artifacts: Iterable[GeneratedArtifact],
        removals: Iterable[PathLike] = (),
    ) -> List[Path]:
        """Write every artifact or none of them; return the written paths."""
        batch = self.commit_artifacts_sync(artifacts, removals)
        batch.finalize()
        return batch.paths

    async def write_artifacts(
        self,
        artifacts: Iterable[GeneratedArtifact],
        removals: Iterable[PathLike] = (),
    ) -> List[Path]:
        return await asyncio.to_thread(self.write_artifacts_sync, list(artifacts), list(removals))

    @contextlib.asynccontextmanager
    async def artifact_transaction(
        self,
        artifacts: Iterable[GeneratedArtifact],
        removals: Iterable[PathLike] = (),
    ) -> AsyncIterator[ArtifactBatch]:
        """Commit a batch, then undo it if the ``async with`` body raises."""
        batch = await asyncio.to_thread(self.commit_artifacts_sync, list(artifacts), list(removals))
        try:
            yield batch
        except BaseException:
            await asyncio.to_thread(batch.rollback)
            raise
        await asyncio.to_thread(batch.finalize)


async def initialize_layout(root: PathLike, validator: Optional[PathValidator] = None) -> Workspace:
    """Create the output directories under ``root`` (idempotent)."""
    workspace = Workspace(root, validator)
    await workspace.initialize_layout()
    return workspace
