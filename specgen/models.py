"""Data models for the spec-generation pipeline.

Parsed documents, the domain entities extracted from them, the artifacts
rendered from those entities, and the shared workflow state record.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

# ---------------------------------------------------------------------------
# Parsed documents
# ---------------------------------------------------------------------------

HEADING = "heading"
PARAGRAPH = "paragraph"
LIST_ITEM = "list-item"
CODE_BLOCK = "code-block"
HORIZONTAL_RULE = "horizontal-rule"

NODE_KINDS = (HEADING, PARAGRAPH, LIST_ITEM, CODE_BLOCK, HORIZONTAL_RULE)


@dataclass(frozen=True, slots=True)
class Node:
    """One block-level element of a parsed document."""

    kind: str
    line: int
    text: str = ""
    level: int = 0
    indent: int = 0
    ordered: bool = False
    language: Optional[str] = None

    @property
    def is_heading(self) -> bool:
        return self.kind == HEADING

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind, "line": self.line, "text": self.text}
        if self.kind == HEADING:
            data["level"] = self.level
        elif self.kind == LIST_ITEM:
            data["indent"] = self.indent
            data["ordered"] = self.ordered
        elif self.kind == CODE_BLOCK:
            data["language"] = self.language
        return data


@dataclass(frozen=True, slots=True)
class DocumentTree:
    """Ordered nodes of one parsed document plus its raw text."""

    nodes: Tuple[Node, ...]
    text: str = ""
    source: Optional[str] = None

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self):
        return iter(self.nodes)

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.text.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class Section:
    """A heading and the nodes that belong under it."""

    heading: Node
    nodes: Tuple[Node, ...]

    @property
    def title(self) -> str:
        return self.heading.text


# ---------------------------------------------------------------------------
# Extracted entities
# ---------------------------------------------------------------------------


class FeatureStatus(str, Enum):
    """Implementation status of an extracted feature."""

    COMPLETE = "complete"
    PARTIAL = "partial"
    MISSING = "missing"

    @property
    def label(self) -> str:
        return {
            FeatureStatus.COMPLETE: "✅ COMPLETE",
            FeatureStatus.PARTIAL: "⚠️ PARTIAL",
            FeatureStatus.MISSING: "❌ MISSING",
        }[self]


@dataclass(slots=True)
class UserStory:
    """"As a <role>, I want <goal>, so that <benefit>"."""

    role: str
    goal: str
    benefit: str
    raw: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "goal": self.goal, "benefit": self.benefit, "raw": self.raw}


@dataclass(slots=True)
class AcceptanceCriterion:
    description: str
    satisfied: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"description": self.description, "satisfied": self.satisfied}


@dataclass(slots=True)
class Feature:
    """One independently specifiable unit of behavior found in the input."""

    id: str
    name: str
    slug: str
    description: str
    user_stories: List[UserStory] = field(default_factory=list)
    acceptance_criteria: List[AcceptanceCriterion] = field(default_factory=list)
    status: FeatureStatus = FeatureStatus.PARTIAL
    dependencies: List[str] = field(default_factory=list)
    technical_details: Optional[List[str]] = None
    unresolved_dependencies: List[str] = field(default_factory=list)
    source_line: int = 0

    @property
    def directory_name(self) -> str:
        return f"{self.id}-{self.slug}"

    @property
    def is_complete(self) -> bool:
        return self.status is FeatureStatus.COMPLETE

    def unmet_criteria(self) -> List[AcceptanceCriterion]:
        return [criterion for criterion in self.acceptance_criteria if not criterion.satisfied]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "user_stories": [story.to_dict() for story in self.user_stories],
            "acceptance_criteria": [criterion.to_dict() for criterion in self.acceptance_criteria],
            "status": self.status.value,
            "dependencies": list(self.dependencies),
            "technical_details": list(self.technical_details) if self.technical_details is not None else None,
            "unresolved_dependencies": list(self.unresolved_dependencies),
            "source_line": self.source_line,
        }


@dataclass(slots=True)
class QualityMetric:
    name: str
    target: str
    measurement: str = "Manual testing or monitoring"

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "target": self.target, "measurement": self.measurement}


@dataclass(slots=True)
class ConstitutionData:
    """Project-wide purpose, values and standards."""

    purpose: str
    values: List[str]
    development_standards: List[str]
    quality_metrics: List[QualityMetric]
    governance: List[str]
    route: str
    technology_stack: Optional[List[str]] = None
    placeholders: List[str] = field(default_factory=list)

    def validate(self) -> List[str]:
        """Return invariant violations, empty when the data is consistent."""
        issues = []

        if not 50 <= len(self.purpose) <= 500:
            issues.append(f"Purpose must be 50-500 characters, got {len(self.purpose)}")
        if not 3 <= len(self.values) <= 10:
            issues.append(f"Must have 3-10 core values, got {len(self.values)}")
        if len(self.development_standards) < 3:
            issues.append("Must have at least 3 development standards")
        if len(self.quality_metrics) < 2:
            issues.append("Must have at least 2 quality metrics")
        if self.route == "prescriptive" and not self.technology_stack:
            issues.append("Technology stack is required for the prescriptive route")
        if self.route != "prescriptive" and self.technology_stack is not None:
            issues.append("Technology stack is only allowed for the prescriptive route")

        return issues

    def to_dict(self) -> Dict[str, Any]:
        return {
            "purpose": self.purpose,
            "values": list(self.values),
            "development_standards": list(self.development_standards),
            "quality_metrics": [metric.to_dict() for metric in self.quality_metrics],
            "governance": list(self.governance),
            "route": self.route,
            "technology_stack": list(self.technology_stack) if self.technology_stack is not None else None,
            "placeholders": list(self.placeholders),
        }


@dataclass(slots=True)
class Task:
    id: str
    description: str
    estimated_hours: int
    dependencies: List[str] = field(default_factory=list)

    @property
    def estimated_effort(self) -> str:
        return f"{self.estimated_hours}h"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "estimated_effort": self.estimated_effort,
            "estimated_hours": self.estimated_hours,
            "dependencies": list(self.dependencies),
        }


@dataclass(slots=True)
class Risk:
    description: str
    probability: str
    impact: str
    mitigation: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "description": self.description,
            "probability": self.probability,
            "impact": self.impact,
            "mitigation": self.mitigation,
        }


@dataclass(slots=True)
class ImplementationPlan:
    """Remaining work for one incomplete feature."""

    feature_id: str
    feature_name: str
    current_state: str
    target_state: str
    tasks: List[Task] = field(default_factory=list)
    risks: List[Risk] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)

    @property
    def total_hours(self) -> int:
        return sum(task.estimated_hours for task in self.tasks)

    @property
    def estimated_effort(self) -> str:
        hours = self.total_hours
        if hours <= 8:
            return f"{hours} hours (1 day)"
        if hours <= 40:
            days = -(-hours // 8)
            return f"{hours} hours ({days} days)"
        weeks = -(-hours // 40)
        return f"{hours} hours ({weeks} {'week' if weeks == 1 else 'weeks'})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feature_id": self.feature_id,
            "feature_name": self.feature_name,
            "current_state": self.current_state,
            "target_state": self.target_state,
            "tasks": [task.to_dict() for task in self.tasks],
            "risks": [risk.to_dict() for risk in self.risks],
            "dependencies": list(self.dependencies),
            "estimated_effort": self.estimated_effort,
        }


# ---------------------------------------------------------------------------
# Generated output
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class GeneratedArtifact:
    """A rendered document waiting to be written."""

    path: Path
    content: str
    kind: str = "spec"
    checksum: str = ""

    def __post_init__(self) -> None:
        if not self.checksum:
            self.checksum = hashlib.sha256(self.content.encode("utf-8")).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "kind": self.kind,
            "checksum": self.checksum,
            "bytes": len(self.content.encode("utf-8")),
        }


# ---------------------------------------------------------------------------
# Workflow state
# ---------------------------------------------------------------------------

STATE_VERSION = "1.0.0"

WORKFLOW_STEPS = (
    "analyze",
    "reverse-engineer",
    "create-specs",
    "gap-analysis",
    "complete-spec",
    "implement",
)

ROUTE_DESCRIPTIONS = {
    "agnostic": "Build new app from business logic (tech-agnostic)",
    "prescriptive": "Manage existing app with Spec Kit (tech-prescriptive)",
}


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def next_workflow_step(step: str) -> Optional[str]:
    """Step that follows ``step`` in the standard order, if any."""
    if step not in WORKFLOW_STEPS:
        return None
    index = WORKFLOW_STEPS.index(step)
    return WORKFLOW_STEPS[index + 1] if index + 1 < len(WORKFLOW_STEPS) else None


@dataclass(slots=True)
class WorkflowState:
    """Shared record of which workflow steps have run."""

    version: str = STATE_VERSION
    created: str = field(default_factory=utc_timestamp)
    updated: str = field(default_factory=utc_timestamp)
    route: Optional[str] = None
    current_step: Optional[str] = None
    completed_steps: List[str] = field(default_factory=list)
    step_details: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def initial(cls, root: Path, route: Optional[str] = None) -> "WorkflowState":
        """State written at workflow start."""
        now = utc_timestamp()
        state = cls(
            created=now,
            updated=now,
            route=route,
            current_step=WORKFLOW_STEPS[0],
            metadata={"projectName": root.name, "projectPath": str(root)},
            step_details={WORKFLOW_STEPS[0]: {"started": now, "status": "in_progress"}},
        )
        if route:
            state.metadata["routeDescription"] = ROUTE_DESCRIPTIONS[route]
        return state

    def add_completed_step(self, step: str) -> bool:
        """Record ``step`` once; return True if it was new."""
        if step in self.completed_steps:
            return False
        self.completed_steps.append(step)
        return True

    def complete_step(self, step: str, details: Optional[Dict[str, Any]] = None) -> None:
        """Mark ``step`` done, advance ``current_step`` and merge step details."""
        self.add_completed_step(step)
        if step in WORKFLOW_STEPS:
            self.current_step = next_workflow_step(step)
        merged = dict(self.step_details.get(step) or {})
        merged.update({"completed": utc_timestamp(), "status": "completed"})
        merged.update(details or {})
        self.step_details[step] = merged

    def set_route(self, route: str) -> None:
        self.route = route
        self.metadata["routeDescription"] = ROUTE_DESCRIPTIONS.get(route, "")

    def validate(self) -> List[str]:
        """Return structural problems, empty when the state is well formed."""
        issues = []
        if not isinstance(self.version, str) or not self.version:
            issues.append("Missing or invalid version")
        if not isinstance(self.created, str) or not self.created:
            issues.append("Missing or invalid created timestamp")
        if not isinstance(self.updated, str) or not self.updated:
            issues.append("Missing or invalid updated timestamp")
        if self.route is not None and self.route not in ROUTE_DESCRIPTIONS:
            issues.append(f"Invalid route: {self.route}")
        if not isinstance(self.completed_steps, list) or not all(
            isinstance(step, str) for step in self.completed_steps
        ):
            issues.append("completedSteps must be a list of step names")
        elif len(set(self.completed_steps)) != len(self.completed_steps):
            issues.append("completedSteps contains duplicates")
        if not isinstance(self.step_details, dict):
            issues.append("stepDetails must be an object")
        if not isinstance(self.metadata, dict):
            issues.append("metadata must be an object")
        return issues

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with the camelCase keys the sibling stages read."""
        return {
            "version": self.version,
            "created": self.created,
            "updated": self.updated,
            "route": self.route,
            "currentStep": self.current_step,
            "completedSteps": list(self.completed_steps),
            "stepDetails": dict(self.step_details),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowState":
        """Create from dictionary representation."""
        route = data.get("route")
        if route is None and data.get("path") is not None:
            route = {"greenfield": "agnostic", "brownfield": "prescriptive"}.get(data["path"], data["path"])
        completed = data.get("completedSteps", [])
        return cls(
            version=data.get("version", STATE_VERSION),
            created=data.get("created", ""),
            updated=data.get("updated", ""),
            route=route,
            current_step=data.get("currentStep"),
            completed_steps=list(completed) if isinstance(completed, list) else completed,
            step_details=data.get("stepDetails", {}),
            metadata=data.get("metadata", {}),
        )
