"""Shared workflow state (``.specgen-state.json``).

Mutations on one root are serialized through an ``asyncio.Lock`` per
canonical root path, so concurrent callers in the same process never lose
each other's updates. Locks are per event loop; nothing here coordinates
separate processes.
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
import inspect
import json
import logging
import weakref
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Tuple, Union

from .config import STATE_FILE, normalize_route
from .errors import FileSystemError, ParseError, StateNotFoundError
from .models import WorkflowState, utc_timestamp
from .security import PathValidator
from .specgen_logging import log_workflow_step
from .workspace import PathLike, Workspace, write_atomic_sync

logger = logging.getLogger("specgen.state")

MAX_STATE_BYTES = 10 * 1024 * 1024

StateMutation = Callable[[WorkflowState], Union[Optional[WorkflowState], Awaitable[Optional[WorkflowState]]]]


@dataclass(slots=True)
class _RootLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


_ROOT_LOCKS: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Dict[str, _RootLock]]" = (
    weakref.WeakKeyDictionary()
)


@contextlib.asynccontextmanager
async def root_lock(root: Path) -> AsyncIterator[None]:
    """Hold the lock guarding state mutations on ``root`` in the running loop.

    The entry for ``root`` is dropped once its last holder or waiter leaves.
    """
    loop = asyncio.get_running_loop()
    locks = _ROOT_LOCKS.get(loop)
    if locks is None:
        locks = {}
        _ROOT_LOCKS[loop] = locks
    key = str(root)
    entry = locks.get(key)
    if entry is None:
        entry = _RootLock()
        locks[key] = entry

    entry.users += 1
    try:
        async with entry.lock:
            yield
    finally:
        entry.users -= 1
        if entry.users == 0 and locks.get(key) is entry:
            del locks[key]


def _resolve(root: Union[Workspace, PathLike], validator: Optional[PathValidator]) -> Tuple[Path, Path]:
    if isinstance(root, Workspace):
        return root.root, root.state_path
    validator = validator or PathValidator()
    canonical = validator.validate(root)
    return canonical, validator.validate_child(canonical, STATE_FILE)


def read_state_file(path: Path) -> WorkflowState:
    """Load and validate the state file at ``path``."""
    try:
        size = path.stat().st_size
    except FileNotFoundError:
        raise StateNotFoundError(
            f"No workflow state at {path}; run initialize_workflow first",
            path=str(path),
            code="ENOENT",
        ) from None
    except OSError as e:
        raise FileSystemError.from_os_error(e, path, "read") from e

    if size > MAX_STATE_BYTES:
        raise ParseError(f"Workflow state file too large: {size} bytes, limit is {MAX_STATE_BYTES} bytes")

    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ParseError(f"Workflow state is not valid UTF-8: {path}") from e
    except OSError as e:
        raise FileSystemError.from_os_error(e, path, "read") from e

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(f"Workflow state is not valid JSON: {e.msg}", line=e.lineno) from e
    if not isinstance(data, dict):
        raise ParseError("Workflow state must be a JSON object")

    state = WorkflowState.from_dict(data)
    issues = state.validate()
    if issues:
        raise ParseError(f"Invalid workflow state: {'; '.join(issues)}")
    return state


def write_state_file(path: Path, state: WorkflowState) -> None:
    write_atomic_sync(path, json.dumps(state.to_dict(), indent=2, ensure_ascii=False) + "\n")


async def load_state(root: Union[Workspace, PathLike], validator: Optional[PathValidator] = None) -> WorkflowState:
    """Current state of ``root``; :class:`StateNotFoundError` if none was recorded."""
    _, path = _resolve(root, validator)
    return await asyncio.to_thread(read_state_file, path)


async def mutate_state(
    root: Union[Workspace, PathLike],
    fn: StateMutation,
    validator: Optional[PathValidator] = None,
) -> WorkflowState:
    """Apply ``fn`` to the state of ``root`` and persist the result.

    ``fn`` receives a private copy and may modify it in place (returning
    ``None``) or return a replacement; it may be a coroutine function.
    Completed steps present before the call are always kept.
    """
    canonical, path = _resolve(root, validator)
    async with root_lock(canonical):
        current = await asyncio.to_thread(read_state_file, path)
        working = copy.deepcopy(current)

        result = fn(working)
        if inspect.isawaitable(result):
            result = await result
        updated = working if result is None else result

        dropped = [step for step in current.completed_steps if step not in updated.completed_steps]
        if dropped:
            logger.warning(f"State mutation tried to drop completed steps {dropped}; keeping them")
            updated.completed_steps = list(current.completed_steps) + [
                step for step in updated.completed_steps if step not in current.completed_steps
            ]

        updated.updated = utc_timestamp()
        issues = updated.validate()
        if issues:
            raise ValueError(f"State mutation produced an invalid state: {'; '.join(issues)}")

        await asyncio.to_thread(write_state_file, path, updated)
        return updated


async def initialize_state(
    root: Union[Workspace, PathLike],
    route: Optional[str] = None,
    validator: Optional[PathValidator] = None,
) -> WorkflowState:
    """Create the state file for ``root`` unless one exists; return the state."""
    route = normalize_route(route)
    canonical, path = _resolve(root, validator)
    async with root_lock(canonical):
        try:
            state = await asyncio.to_thread(read_state_file, path)
        except StateNotFoundError:
            state = WorkflowState.initial(canonical, route)
            await asyncio.to_thread(write_state_file, path, state)
            logger.info(f"Initialized workflow state at {path}")
            log_workflow_step("initialize", root=str(canonical), route=route)
            return state

        if route and not state.route:
            state.set_route(route)
            state.updated = utc_timestamp()
            await asyncio.to_thread(write_state_file, path, state)
        return state


async def complete_step(
    root: Union[Workspace, PathLike],
    step: str,
    details: Optional[Dict[str, Any]] = None,
    validator: Optional[PathValidator] = None,
) -> WorkflowState:
    """Record ``step`` as completed and merge ``details`` into its entry."""

    def apply(state: WorkflowState) -> None:
        state.complete_step(step, details)

    state = await mutate_state(root, apply, validator)
    log_workflow_step(step, root=str(_resolve(root, validator)[0]), current_step=state.current_step)
    return state
