"""MCP server exposing the spec-generation workflow tools."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP

from specgen.config import Settings
from specgen.specgen_logging import setup_logging
from specgen.workflow import WorkflowManager

mcp = FastMCP("speck-it-specgen")


def _resolve_root(root: Optional[str], settings: Settings) -> str:
    if root:
        return root
    if settings.project_root:
        return str(settings.project_root)
    return str(Path.cwd())


def _manager(root: Optional[str]) -> WorkflowManager:
    settings = Settings.from_env()
    return WorkflowManager(_resolve_root(root, settings), settings=settings)


@mcp.tool()
async def initialize_workflow(route: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 0: Create the .specify/ layout and the workflow state file for a project.
    route is 'agnostic' (business logic only) or 'prescriptive' (keep the existing stack);
    'greenfield' and 'brownfield' are accepted as aliases."""

    return await _manager(root).initialize_workflow(route)


@mcp.tool()
async def generate_all_specs(route: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Generate the constitution, one spec per feature and a plan per incomplete feature
    from docs/reverse-engineering/*.md. Uses the route recorded in workflow state when
    route is omitted. Either every file is written or none is."""

    return await _manager(root).generate_all_specs(route)


@mcp.tool()
async def create_constitution(route: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Generate only .specify/memory/constitution.md from the functional specification."""

    return await _manager(root).create_constitution(route)


@mcp.tool()
async def create_feature_specs(route: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Generate only the per-feature specs under .specify/specs/<id>-<slug>/spec.md."""

    return await _manager(root).create_feature_specs(route)


@mcp.tool()
async def create_impl_plans(route: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Generate only the implementation plans for features that are partial or missing."""

    return await _manager(root).create_impl_plans(route)


@mcp.tool()
async def get_workflow_state(root: Optional[str] = None) -> Dict[str, Any]:
    """Return the shared workflow state (.specgen-state.json) for a project."""

    return await _manager(root).get_workflow_state()


@mcp.tool()
def get_workflow_guide() -> Dict[str, Any]:
    """Get guidance on the recommended spec-generation workflow."""
    return {
        "workflow_overview": "Turn reverse-engineering documents into a constitution, feature specs and plans",
        "steps": [
            {
                "step": 1,
                "tool": "initialize_workflow",
                "description": "Create the .specify/ layout and workflow state with the chosen route",
                "purpose": "Record whether generated documents are technology-agnostic or prescriptive",
            },
            {
                "step": 2,
                "tool": "generate_all_specs",
                "description": "Generate every artifact in one all-or-nothing run",
                "purpose": "Produce the constitution, feature specs and implementation plans",
            },
            {
                "step": 3,
                "tools": ["create_constitution", "create_feature_specs", "create_impl_plans"],
                "description": "Regenerate one kind of artifact at a time",
                "purpose": "Refresh part of the spec set after editing the input documents",
            },
            {
                "step": 4,
                "tool": "get_workflow_state",
                "description": "Inspect completed steps and the next step in the workflow",
                "purpose": "Hand off to gap analysis once create-specs is complete",
            },
        ],
        "inputs": [
            "docs/reverse-engineering/functional-specification.md (required)",
            "docs/reverse-engineering/technical-debt-analysis.md (optional)",
        ],
        "tips": [
            "Give functional-specification.md a '# Features' section with one '## <name>' heading per feature",
            "Use '- [x]' and '- [ ]' acceptance criteria so feature status can be derived",
            "Write 'Depends on <feature name>' in a feature description to link features",
            "Re-running generation on unchanged input rewrites identical files",
        ],
    }


@mcp.resource("specgen://state")
async def resource_state() -> str:
    """Resource view of the workflow state for the configured project root."""

    result = await _manager(None).get_workflow_state()
    if not result["success"]:
        return f"No workflow state: {result['error']['message']}"

    state = result["state"]
    lines = [
        "Spec Generation Workflow",
        "",
        f"Route: {state['route'] or 'not set'}",
        f"Current step: {state['currentStep'] or 'done'}",
        f"Completed: {', '.join(state['completedSteps']) or 'none'}",
        f"Updated: {state['updated']}",
    ]
    return "\n".join(lines)


def main() -> None:
    settings = Settings.from_env()
    setup_logging(settings.log_level, settings.log_file)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
