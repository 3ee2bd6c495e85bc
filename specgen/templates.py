"""Placeholder templates for the generated markdown documents.

Supported syntax::

    {{name}}                          variable
    {{#if name}}...{{else}}...{{/if}}  conditional (else optional)
    {{#each name}}...{{/each}}         loop; {{this}} and {{index}} inside

Rendering resolves conditionals first, then loops, then variables. Loop
bodies are rendered per item, so conditionals inside a loop see the item.
A block tag that sits alone on a line does not leave a blank line behind.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from .errors import TemplateError

logger = logging.getLogger("specgen.templates")

PACKAGED_TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
TEMPLATE_NAME = re.compile(r"^[a-z0-9][a-z0-9-]*$")
TOKEN = re.compile(r"\{\{\s*(#if|#each|else|/if|/each)(?:\s+(\w+))?\s*\}\}|\{\{\s*(\w+)\s*\}\}")
LOOP_BOUND = ("this", "index")


@dataclass(slots=True)
class Variable:
    name: str


@dataclass(slots=True)
class Conditional:
    key: str
    then: List["Block"] = field(default_factory=list)
    otherwise: List["Block"] = field(default_factory=list)


@dataclass(slots=True)
class Loop:
    key: str
    body: List["Block"] = field(default_factory=list)


Block = Union[str, Variable, Conditional, Loop]


def parse_template(template: str, name: Optional[str] = None) -> List[Block]:
    """Split ``template`` into text and block nodes, checking that blocks close."""
    root: List[Block] = []
    # each frame: (opening construct, list currently being filled)
    stack: List[tuple] = []
    current = root
    position = 0

    for match in TOKEN.finditer(template):
        tag, key, variable = match.group(1), match.group(2), match.group(3)
        start, end = match.start(), match.end()
        if tag is not None:
            # a block tag alone on its line takes the whole line with it
            line_start = template.rfind("\n", 0, start) + 1
            at_line_end = end == len(template) or template[end] == "\n"
            if line_start >= position and at_line_end and not template[line_start:start].strip():
                start = line_start
                end = min(end + 1, len(template))

        if start > position:
            current.append(template[position:start])
        position = end

        if variable is not None:
            current.append(Variable(variable))
            continue

        if tag in ("#if", "#each"):
            if not key:
                raise TemplateError(f"'{{{{{tag}}}}}' needs a key", template_name=name)
            block: Union[Conditional, Loop] = Conditional(key) if tag == "#if" else Loop(key)
            current.append(block)
            stack.append((block, current))
            current = block.then if isinstance(block, Conditional) else block.body
        elif tag == "else":
            if not stack or not isinstance(stack[-1][0], Conditional) or current is stack[-1][0].otherwise:
                raise TemplateError("Unexpected {{else}} outside an {{#if}} block", template_name=name)
            current = stack[-1][0].otherwise
        else:
            expected = Conditional if tag == "/if" else Loop
            if not stack or not isinstance(stack[-1][0], expected):
                raise TemplateError(f"Unexpected {{{{{tag}}}}} without a matching opening tag", template_name=name)
            _, current = stack.pop()

    if stack:
        opening = stack[-1][0]
        kind = "#if" if isinstance(opening, Conditional) else "#each"
        raise TemplateError(f"Unclosed {{{{{kind} {opening.key}}}}}", template_name=name)

    if position < len(template):
        current.append(template[position:])
    return root


def _item_data(data: Dict[str, Any], item: Any, index: int) -> Dict[str, Any]:
    if isinstance(item, dict):
        return {**data, **item, "index": index}
    return {**data, "this": item, "index": index}


def _iterable(value: Any, key: str, name: Optional[str]) -> Sequence[Any]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise TemplateError(
            f"'{{{{#each {key}}}}}' expects a list, got {type(value).__name__}",
            template_name=name,
        )
    return value


def format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(format_value(item) for item in value)
    if isinstance(value, dict):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


class TemplateEngine:
    """Render templates and look them up across template directories."""

    def __init__(self, template_dirs: Optional[Iterable[Union[str, Path]]] = None):
        dirs = [Path(directory) for directory in (template_dirs or []) if directory]
        if PACKAGED_TEMPLATES_DIR not in dirs:
            dirs.append(PACKAGED_TEMPLATES_DIR)
        self.template_dirs: List[Path] = dirs

    def load(self, name: str) -> str:
        """Read ``<name>.md`` from the first template directory that has it."""
        if not TEMPLATE_NAME.match(name or ""):
            raise TemplateError(f"Invalid template name: '{name}'", template_name=name)

        for directory in self.template_dirs:
            path = directory / f"{name}.md"
            if path.is_file():
                logger.debug(f"Loading template {name} from {directory}")
                try:
                    return path.read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError) as e:
                    raise TemplateError(f"Failed to read template {name}: {e}", template_name=name) from e

        searched = ", ".join(str(directory) for directory in self.template_dirs)
        raise TemplateError(f"Template not found: {name} (searched {searched})", template_name=name)

    def render(self, template: str, data: Dict[str, Any], name: Optional[str] = None) -> str:
        blocks = parse_template(template, name)
        return self._render_blocks(blocks, data, name)

    def _render_blocks(self, blocks: List[Block], data: Dict[str, Any], name: Optional[str]) -> str:
        blocks = self._resolve_conditionals(blocks, data)
        blocks = self._expand_loops(blocks, data, name)
        return "".join(
            block if isinstance(block, str) else format_value(data.get(block.name))
            for block in blocks
        )

    def _resolve_conditionals(self, blocks: List[Block], data: Dict[str, Any]) -> List[Block]:
        resolved: List[Block] = []
        for block in blocks:
            if isinstance(block, Conditional):
                branch = block.then if data.get(block.key) else block.otherwise
                resolved.extend(self._resolve_conditionals(branch, data))
            else:
                # loop bodies are left for the per-item pass
                resolved.append(block)
        return resolved

    def _expand_loops(self, blocks: List[Block], data: Dict[str, Any], name: Optional[str]) -> List[Block]:
        expanded: List[Block] = []
        for block in blocks:
            if isinstance(block, Loop):
                items = _iterable(data.get(block.key), block.key, name)
                expanded.extend(
                    self._render_blocks(block.body, _item_data(data, item, index), name)
                    for index, item in enumerate(items)
                )
            else:
                expanded.append(block)
        return expanded

    def missing_variables(self, template: str, data: Dict[str, Any], name: Optional[str] = None) -> List[str]:
        """Plain placeholders whose keys ``data`` does not provide."""
        missing: List[str] = []
        self._collect_missing(parse_template(template, name), data, missing, bound=())
        return missing

    def _collect_missing(
        self,
        blocks: List[Block],
        data: Dict[str, Any],
        missing: List[str],
        bound: Sequence[str],
    ) -> None:
        for block in blocks:
            if isinstance(block, Variable):
                if block.name not in data and block.name not in bound and block.name not in missing:
                    missing.append(block.name)
            elif isinstance(block, Conditional):
                self._collect_missing(block.then, data, missing, bound)
                self._collect_missing(block.otherwise, data, missing, bound)
            elif isinstance(block, Loop):
                items = data.get(block.key)
                if not isinstance(items, (list, tuple)):
                    continue
                for index, item in enumerate(items):
                    self._collect_missing(block.body, _item_data(data, item, index), missing, LOOP_BOUND)
