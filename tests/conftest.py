"""Shared fixtures: sample reverse-engineering documents and project roots."""

from pathlib import Path

import pytest

from specgen.config import Settings
from specgen.markdown import MarkdownParser
from specgen.security import PathValidator

FUNCTIONAL_SPEC = """\
# Functional Specification: Task Tracker

Task Tracker helps small teams plan, assign and follow up on their work in one shared place, replacing spreadsheets and email threads.

## Core Values

- Reliability: data is never lost
- Simplicity: every screen does one job
- Transparency: everyone sees the same status

## Development Standards

- Every change is reviewed
- Business rules are covered by unit tests
- APIs are documented

## Quality Metrics

- Page load time: under 2 seconds
- Availability: 99.9% monthly

## Technology Stack

- Backend: Python, FastAPI
- Database: PostgreSQL

# Features

## User Authentication & Login

Users sign in with email and password to reach their workspace.

- As a team member, I want to sign in with my email, so that my tasks stay private

### Acceptance Criteria

- [x] Users can sign in with email and password
- [x] Sessions expire after 30 minutes

## Task Management

Create, edit and close tasks. Depends on User Authentication & Login.

- As a team lead, I want to create tasks, so that work is visible

### Acceptance Criteria

- [x] Tasks can be created
- [ ] Tasks can be assigned to a team member
- [ ] Closed tasks are archived

## Notifications

Email alerts when a Task Management item is assigned.

### Acceptance Criteria

- [ ] Assignees receive an email
- [ ] Users can mute notifications

## Reporting

Weekly summaries of completed work.
"""

TECH_DEBT = """\
# Technical Debt Analysis

## Notifications

Not implemented. No email provider is configured.

## Reporting

Reporting is partially built: the weekly export exists but charts are incomplete.
"""


def write_inputs(root: Path, functional: str = FUNCTIONAL_SPEC, debt: str = TECH_DEBT) -> None:
    """Write the reverse-engineering documents under ``root``."""
    docs = root / "docs" / "reverse-engineering"
    docs.mkdir(parents=True, exist_ok=True)
    (docs / "functional-specification.md").write_text(functional, encoding="utf-8")
    if debt is not None:
        (docs / "technical-debt-analysis.md").write_text(debt, encoding="utf-8")


@pytest.fixture
def parser():
    return MarkdownParser()


@pytest.fixture
def functional_tree(parser):
    return parser.parse(FUNCTIONAL_SPEC, source="functional-specification.md")


@pytest.fixture
def debt_tree(parser):
    return parser.parse(TECH_DEBT, source="technical-debt-analysis.md")


@pytest.fixture
def validator(tmp_path):
    return PathValidator([tmp_path])


@pytest.fixture
def settings(tmp_path):
    return Settings(allowed_roots=[tmp_path])


@pytest.fixture
def project(tmp_path):
    """Project root holding both input documents."""
    root = tmp_path / "task-tracker"
    root.mkdir()
    write_inputs(root)
    return root


@pytest.fixture
def functional_text():
    return FUNCTIONAL_SPEC


@pytest.fixture
def debt_text():
    return TECH_DEBT


@pytest.fixture
def write_documents():
    """Callable writing input documents under a root: ``write_documents(root, functional, debt)``."""
    return write_inputs
