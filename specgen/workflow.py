"""Generation workflow for the spec-generation stage.

:class:`WorkflowManager` validates the project root, reads the
reverse-engineering documents, extracts entities, renders them through the
route's templates, writes every artifact and removes stale outputs in one
all-or-nothing batch and records progress in the shared workflow state.
Each public operation returns a result dictionary; pipeline errors become
failure results with a remediation hint, anything else propagates.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from .config import FUNCTIONAL_SPEC_FILE, Settings, normalize_route
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
from .extractor import SpecExtractor, find_dependency_cycles
from .markdown import MarkdownParser
from .models import (
    ConstitutionData,
    DocumentTree,
    Feature,
    FeatureStatus,
    GeneratedArtifact,
    ImplementationPlan,
    WorkflowState,
    next_workflow_step,
)
from .security import PathValidator
from .specgen_logging import (
    log_error_with_context,
    log_operation,
    log_performance,
    log_workflow_step,
    observability_hooks,
)
from .state import initialize_state, load_state, mutate_state
from .templates import TemplateEngine
from .workspace import Workspace

logger = logging.getLogger("specgen.workflow")

STEP = "create-specs"
PARTS = ("constitution", "feature_specs", "impl_plans")

PLACEHOLDER_LABELS = {
    "values": "Core Values",
    "development_standards": "Development Standards",
    "quality_metrics": "Quality Metrics",
    "governance": "Governance",
}

EXTRACTION_REMEDIATION = {
    "constitution": (
        "Add an introductory paragraph of at least 50 characters (or a 'Purpose' section) to "
        "functional-specification.md. The prescriptive route also needs a 'Technology Stack' section."
    ),
    "features": (
        "Add a '# Features' section to functional-specification.md with one '## <Feature name>' "
        "heading per feature."
    ),
    "plans": "Check that every feature has a description and acceptance criteria.",
}


def remediation_for(error: SpecGenError) -> Tuple[str, Optional[str]]:
    """User-facing fix for ``error`` and the step to run next."""
    if isinstance(error, ExtractionError):
        return EXTRACTION_REMEDIATION[error.phase], None
    if isinstance(error, StateNotFoundError):
        return "Run initialize_workflow, or pass a route, to create the workflow state.", "initialize_workflow"
    if isinstance(error, FileSystemError):
        if error.code == "ENOENT" and error.path and error.path.endswith(FUNCTIONAL_SPEC_FILE.name):
            return (
                f"Run the reverse-engineer step first; it writes {FUNCTIONAL_SPEC_FILE.as_posix()}.",
                "reverse-engineer",
            )
        return "Check that the project directory exists and is writable.", None
    if isinstance(error, ParseError):
        return "Fix the document encoding or reduce it below the size limit (SPECGEN_MAX_DOCUMENT_BYTES).", None
    if isinstance(error, TemplateError):
        return (
            "Restore the template or supply the missing variables; host templates live in .specify/templates/.",
            None,
        )
    if isinstance(error, SecurityError):
        return "Pass a directory inside the allowed workspace roots (SPECGEN_ALLOWED_ROOTS).", None
    if isinstance(error, RouteError):
        return "Pass route='agnostic' or route='prescriptive'.", None
    return "See the error message for details.", None


def failure_result(error: SpecGenError, operation: str) -> Dict[str, Any]:
    suggestion, next_step = remediation_for(error)
    return {
        "success": False,
        "error": error.to_dict(),
        "suggestion": suggestion,
        "next_suggested_step": next_step or operation,
        "message": f"Error: {error.message}",
    }


@dataclass(slots=True)
class PipelineInputs:
    functional: DocumentTree
    debt: Optional[DocumentTree]


@dataclass(slots=True)
class PipelineOutput:
    artifacts: List[GeneratedArtifact]
    summary: Dict[str, Any]
    warnings: List[str]
    details: Dict[str, Any]
    removals: List[Path] = field(default_factory=list)


# ----------------------------------------------------------------------
# Template contexts
# ----------------------------------------------------------------------


def constitution_context(project_name: str, data: ConstitutionData) -> Dict[str, Any]:
    return {
        "project_name": project_name,
        "route": data.route,
        "purpose": data.purpose,
        "values": list(data.values),
        "development_standards": list(data.development_standards),
        "quality_metrics": [metric.to_dict() for metric in data.quality_metrics],
        "governance": list(data.governance),
        "technology_stack": list(data.technology_stack or []),
        "placeholders": [PLACEHOLDER_LABELS.get(name, name) for name in data.placeholders],
    }


def _dependency_refs(ids: List[str], names: Dict[str, str]) -> List[Dict[str, str]]:
    return [{"id": dep, "name": names.get(dep, "")} for dep in ids]


def feature_context(feature: Feature, names: Dict[str, str]) -> Dict[str, Any]:
    return {
        "id": feature.id,
        "name": feature.name,
        "slug": feature.slug,
        "description": feature.description,
        "status": feature.status.value,
        "status_label": feature.status.label,
        "user_stories": [story.to_dict() for story in feature.user_stories],
        "acceptance_criteria": [
            {
                "description": criterion.description,
                "satisfied": criterion.satisfied,
                "mark": "x" if criterion.satisfied else " ",
            }
            for criterion in feature.acceptance_criteria
        ],
        "dependencies": _dependency_refs(feature.dependencies, names),
        "unresolved_dependencies": list(feature.unresolved_dependencies),
        "technical_details": list(feature.technical_details or []),
        "has_plan": not feature.is_complete,
    }


def plan_context(plan: ImplementationPlan, feature: Feature, names: Dict[str, str]) -> Dict[str, Any]:
    return {
        "feature_id": plan.feature_id,
        "feature_name": plan.feature_name,
        "status_label": feature.status.label,
        "estimated_effort": plan.estimated_effort,
        "current_state": plan.current_state,
        "target_state": plan.target_state,
        "tasks": [task.to_dict() for task in plan.tasks],
        "risks": [risk.to_dict() for risk in plan.risks],
        "dependencies": _dependency_refs(plan.dependencies, names),
    }


def prune_cycle_edges(plans: Dict[str, ImplementationPlan], cycles: List[List[str]]) -> None:
    """Drop from each plan the dependency edges that close a cycle."""
    closing = {(cycle[-1], cycle[0]) for cycle in cycles}
    for plan in plans.values():
        plan.dependencies = [dep for dep in plan.dependencies if (plan.feature_id, dep) not in closing]


class WorkflowManager:
    """Run the spec-generation pipeline against one project root."""

    def __init__(
        self,
        root: str | Path,
        settings: Optional[Settings] = None,
        validator: Optional[PathValidator] = None,
    ):
        self.root = root
        self.settings = settings or Settings.from_env()
        self.validator = validator or PathValidator(self.settings.effective_allowed_roots())
        self.parser = MarkdownParser(self.settings.max_document_bytes)
        self.extractor = SpecExtractor()
        self._workspace: Optional[Workspace] = None

    @property
    def workspace(self) -> Workspace:
        """Validated workspace; raises ``SecurityError`` for a bad root."""
        if self._workspace is None:
            self._workspace = Workspace(self.root, self.validator)
        return self._workspace

    def template_engine(self) -> TemplateEngine:
        return TemplateEngine([self.workspace.templates_dir, self.settings.template_dir])

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    @log_performance("generate_all_specs")
    async def generate_all_specs(self, route: Optional[str] = None) -> Dict[str, Any]:
        """Constitution, every feature spec and every needed plan in one run."""
        return await self._run("generate_all_specs", route, set(PARTS))

    @log_performance("create_constitution")
    async def create_constitution(self, route: Optional[str] = None) -> Dict[str, Any]:
        return await self._run("create_constitution", route, {"constitution"})

    @log_performance("create_feature_specs")
    async def create_feature_specs(self, route: Optional[str] = None) -> Dict[str, Any]:
        return await self._run("create_feature_specs", route, {"feature_specs"})

    @log_performance("create_impl_plans")
    async def create_impl_plans(self, route: Optional[str] = None) -> Dict[str, Any]:
        return await self._run("create_impl_plans", route, {"impl_plans"})

    async def initialize_workflow(self, route: Optional[str] = None) -> Dict[str, Any]:
        """Create the output layout and the workflow state file."""
        try:
            route = self._normalize(route)
            workspace = self.workspace
            created = await workspace.initialize_layout()
            state = await initialize_state(workspace, route)
        except SpecGenError as e:
            log_error_with_context(e, {"operation": "initialize_workflow", "root": str(self.root)})
            return failure_result(e, "initialize_workflow")

        return {
            "success": True,
            "root": str(workspace.root),
            "route": state.route,
            "created": [workspace.relative(path) for path in created],
            "state": state.to_dict(),
            "next_suggested_step": "generate_all_specs",
            "workflow_tip": "Next: run generate_all_specs to turn the reverse-engineering documents into specs",
            "message": f"Workflow initialized at {workspace.root}",
        }

    async def get_workflow_state(self) -> Dict[str, Any]:
        try:
            state = await load_state(self.workspace)
        except SpecGenError as e:
            return failure_result(e, "get_workflow_state")

        return {
            "success": True,
            "state": state.to_dict(),
            "next_suggested_step": state.current_step,
            "message": f"Completed steps: {', '.join(state.completed_steps) or 'none'}",
        }

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run(self, operation: str, route: Optional[str], parts: Set[str]) -> Dict[str, Any]:
        try:
            with log_operation(operation, root=str(self.root), parts=sorted(parts)):
                workspace = self.workspace
                route, state = await self._resolve_route(workspace, route)
                await workspace.initialize_layout()
                inputs = await self._read_inputs(workspace)

                output = await self._generate(workspace, inputs, route, parts)
                async with workspace.artifact_transaction(output.artifacts, output.removals) as batch:
                    state = await self._record(workspace, route, parts, output.details)
                paths = batch.paths
        except SpecGenError as e:
            log_error_with_context(e, {"operation": operation, "root": str(self.root), "route": route})
            return failure_result(e, operation)

        for warning in output.warnings:
            logger.warning(warning)
        observability_hooks.log_workflow_event(
            "specs_generated",
            root=str(workspace.root),
            operation=operation,
            files=len(paths),
        )

        generated = [workspace.relative(path) for path in paths]
        next_step = state.current_step if STEP in state.completed_steps else self._next_part(parts, state)
        return {
            "success": True,
            "route": route,
            "generated": generated,
            "summary": output.summary,
            "warnings": output.warnings,
            "next_suggested_step": next_step,
            "workflow_tip": self._tip(next_step),
            "message": f"Generated {len(generated)} files for {workspace.root.name} ({route} route)",
        }

    @staticmethod
    def _normalize(route: Optional[str]) -> Optional[str]:
        try:
            return normalize_route(route)
        except ValueError as e:
            raise RouteError(str(e)) from None

    async def _resolve_route(self, workspace: Workspace, route: Optional[str]) -> Tuple[str, WorkflowState]:
        """Route argument, else the one recorded in workflow state."""
        route = self._normalize(route)
        try:
            state = await load_state(workspace)
        except StateNotFoundError:
            if route is None:
                raise
            state = await initialize_state(workspace, route)

        resolved = route or state.route
        if resolved is None:
            raise RouteError("No route given and none recorded in workflow state")
        return resolved, state

    async def _read_inputs(self, workspace: Workspace) -> PipelineInputs:
        max_bytes = self.settings.max_document_bytes
        functional_path = workspace.functional_spec_path
        text = await workspace.read_document(functional_path, max_bytes)
        functional = self.parser.parse(text, source=workspace.relative(functional_path))

        debt = None
        debt_path = workspace.tech_debt_path
        if await asyncio.to_thread(debt_path.is_file):
            debt_text = await workspace.read_document(debt_path, max_bytes)
            debt = self.parser.parse(debt_text, source=workspace.relative(debt_path))
        else:
            logger.info(f"No technical debt analysis at {debt_path}; status falls back to acceptance criteria")
        return PipelineInputs(functional=functional, debt=debt)

    async def _render(self, engine: TemplateEngine, name: str, data: Dict[str, Any]) -> str:
        template = await asyncio.to_thread(engine.load, name)
        missing = engine.missing_variables(template, data, name)
        if missing:
            raise TemplateError(
                f"Template {name} references variables with no data: {', '.join(missing)}",
                template_name=name,
                missing_variables=missing,
            )
        return engine.render(template, data, name)

    async def _generate(
        self,
        workspace: Workspace,
        inputs: PipelineInputs,
        route: str,
        parts: Set[str],
    ) -> PipelineOutput:
        engine = self.template_engine()
        artifacts: List[GeneratedArtifact] = []
        warnings: List[str] = []
        summary: Dict[str, Any] = {}
        details: Dict[str, Any] = {"route": route}
        removals: List[Path] = []

        if "constitution" in parts:
            data = self.extractor.extract_constitution(inputs.functional, route)
            content = await self._render(
                engine,
                f"constitution-{route}",
                constitution_context(workspace.root.name, data),
            )
            path = workspace.constitution_path
            artifacts.append(GeneratedArtifact(path=path, content=content, kind="constitution"))
            summary["values"] = len(data.values)
            summary["placeholders"] = list(data.placeholders)
            details["constitution"] = workspace.relative(path)

        if parts & {"feature_specs", "impl_plans"}:
            features = self.extractor.extract_features(inputs.functional, inputs.debt, route=route)
            names = {feature.id: feature.name for feature in features}
            by_id = {feature.id: feature for feature in features}

            for feature in features:
                for reference in feature.unresolved_dependencies:
                    warnings.append(
                        f"Feature {feature.id} ({feature.name}) depends on unknown feature '{reference}'"
                    )
            cycles = find_dependency_cycles(features)
            for cycle in cycles:
                warnings.append(f"Dependency cycle: {' -> '.join(cycle + [cycle[0]])}")

            summary["features"] = {
                "total": len(features),
                "complete": sum(1 for f in features if f.status is FeatureStatus.COMPLETE),
                "partial": sum(1 for f in features if f.status is FeatureStatus.PARTIAL),
                "missing": sum(1 for f in features if f.status is FeatureStatus.MISSING),
            }

            plans = self.extractor.generate_plans(features, inputs.debt)
            prune_cycle_edges(plans, cycles)
            removals = await workspace.stale_outputs(features, plans.keys())
            details["removed"] = [workspace.relative(path) for path in removals]

            if "feature_specs" in parts:
                spec_paths = []
                for feature in features:
                    content = await self._render(
                        engine,
                        f"feature-spec-{route}",
                        feature_context(feature, names),
                    )
                    path = workspace.spec_path(feature)
                    artifacts.append(GeneratedArtifact(path=path, content=content, kind="spec"))
                    spec_paths.append(workspace.relative(path))
                details["feature_specs"] = {"count": len(spec_paths), "paths": spec_paths}

            if "impl_plans" in parts:
                plan_paths = []
                for feature_id, plan in plans.items():
                    feature = by_id[feature_id]
                    content = await self._render(
                        engine,
                        "implementation-plan",
                        plan_context(plan, feature, names),
                    )
                    path = workspace.plan_path(feature)
                    artifacts.append(GeneratedArtifact(path=path, content=content, kind="plan"))
                    plan_paths.append(workspace.relative(path))
                summary["plans"] = len(plans)
                details["impl_plans"] = {"count": len(plan_paths), "paths": plan_paths}

        return PipelineOutput(
            artifacts=artifacts,
            summary=summary,
            warnings=warnings,
            details=details,
            removals=removals,
        )

    async def _record(
        self,
        workspace: Workspace,
        route: str,
        parts: Set[str],
        details: Dict[str, Any],
    ) -> WorkflowState:
        """Merge this run into the state; complete the step once every part has run."""

        def apply(state: WorkflowState) -> None:
            if state.route != route:
                state.set_route(route)
            entry = dict(state.step_details.get(STEP) or {})
            entry.update(details)
            state.step_details[STEP] = entry
            if STEP in state.completed_steps:
                return
            if all(part in entry for part in PARTS):
                state.complete_step(STEP)
            else:
                entry["status"] = "in_progress"
                state.current_step = STEP

        state = await mutate_state(workspace, apply)
        if STEP in state.completed_steps:
            log_workflow_step(STEP, root=str(workspace.root), current_step=state.current_step)
        return state

    @staticmethod
    def _next_part(parts: Set[str], state: WorkflowState) -> str:
        entry = state.step_details.get(STEP) or {}
        for part, tool in zip(PARTS, ("create_constitution", "create_feature_specs", "create_impl_plans")):
            if part not in entry:
                return tool
        return next_workflow_step(STEP) or STEP

    @staticmethod
    def _tip(next_step: Optional[str]) -> str:
        if next_step == "gap-analysis":
            return "Next: run gap analysis to compare the generated specs with the implementation"
        if next_step and next_step.startswith("create_"):
            return f"Next: run {next_step} to finish generating the spec set"
        if next_step:
            return f"Next: continue the workflow with {next_step}"
        return "All workflow steps are complete"
