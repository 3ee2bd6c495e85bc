"""Unit tests for constitution, feature and plan extraction."""

import pytest

from specgen.errors import ExtractionError
from specgen.extractor import (
    MAX_VALUES,
    SpecExtractor,
    find_dependency_cycles,
    slugify,
)
from specgen.markdown import MarkdownParser
from specgen.models import AcceptanceCriterion, Feature, FeatureStatus

INTRO = (
    "Inventory Hub keeps warehouse stock levels accurate across every location "
    "and alerts buyers before items run out."
)


def parse(text):
    return MarkdownParser().parse(text)


def feature_doc(*names, intro=INTRO):
    sections = "\n".join(f"## {name}\n\nDescription of {name}.\n" for name in names)
    return parse(f"{intro}\n\n# Features\n\n{sections}")


@pytest.fixture
def extractor():
    return SpecExtractor()


class TestSlugify:
    """Test cases for directory slugs."""

    def test_slug_example(self):
        """Test punctuation runs collapse to a single dash."""
        assert slugify("User Authentication & Login") == "user-authentication-login"

    def test_slug_trims_dashes(self):
        """Test leading and trailing separators are removed."""
        assert slugify("  (Beta) Search!  ") == "beta-search"


class TestFeatureDetection:
    """Test cases for feature detection tiers."""

    def test_features_section_headings(self, extractor):
        """Test five headings under '# Features' give ids 001 to 005 in order."""
        tree = feature_doc("Alpha", "Beta", "Gamma", "Delta", "Epsilon")

        features = extractor.extract_features(tree)

        assert [f.id for f in features] == ["001", "002", "003", "004", "005"]
        assert [f.name for f in features] == ["Alpha", "Beta", "Gamma", "Delta", "Epsilon"]
        assert features[0].description == "Description of Alpha."
        assert features[0].directory_name == "001-alpha"

    def test_level_two_fallback_skips_structural_headings(self, extractor):
        """Test plain level-2 headings are used when there is no Features section."""
        tree = parse(
            "# Product\n\n## Overview\n\nText.\n\n## Search\n\nFind items.\n\n"
            "## Checkout\n\nPay for items.\n\n## Wishlist\n\nSave items.\n"
        )

        features = extractor.extract_features(tree)

        assert [f.name for f in features] == ["Search", "Checkout", "Wishlist"]

    def test_level_three_fallback(self, extractor):
        """Test level-3 headings are tried after level-2 ones."""
        tree = parse(
            "# Product\n\n## Requirements\n\n### Search\n\nA.\n\n### Checkout\n\nB.\n\n### Wishlist\n\nC.\n"
        )

        features = extractor.extract_features(tree)

        assert [f.name for f in features] == ["Search", "Checkout", "Wishlist"]

    def test_numbered_list_fallback(self, extractor):
        """Test a numbered list is the last detection tier."""
        tree = parse(
            "Intro text.\n\n1. Search: find items by name\n2. Checkout - pay by card\n3. Wishlist\n"
        )

        features = extractor.extract_features(tree)

        assert [f.name for f in features] == ["Search", "Checkout", "Wishlist"]
        assert features[0].description == "find items by name"
        assert features[1].description == "pay by card"
        assert features[2].description == "No description available"

    def test_numbered_heading_prefix_removed(self, extractor):
        """Test 'Feature 1:' and 'F2.' prefixes are stripped from names."""
        tree = feature_doc("Feature 1: Search", "F2. Checkout", "3) Wishlist")

        features = extractor.extract_features(tree)

        assert [f.name for f in features] == ["Search", "Checkout", "Wishlist"]

    def test_no_features_raises(self, extractor):
        """Test that a document without any candidates fails extraction."""
        tree = parse("Just a paragraph of prose and nothing else.\n")

        with pytest.raises(ExtractionError) as exc_info:
            extractor.extract_features(tree)

        assert exc_info.value.phase == "features"
        assert exc_info.value.details["tried"] == [
            "features-section",
            "level-2-headings",
            "level-3-headings",
            "numbered-list",
        ]

    def test_duplicate_slugs_get_suffix(self, extractor):
        """Test colliding slugs are made unique."""
        tree = feature_doc("Search", "Search!", "search")

        features = extractor.extract_features(tree)

        assert [f.slug for f in features] == ["search", "search-2", "search-3"]
        assert len({f.directory_name for f in features}) == 3


class TestFeatureDetails:
    """Test cases for stories, criteria, status and dependencies."""

    def test_user_stories_and_criteria(self, extractor, functional_tree):
        """Test parsing user stories and checkbox criteria."""
        features = extractor.extract_features(functional_tree)
        auth = features[0]

        assert auth.name == "User Authentication & Login"
        assert auth.slug == "user-authentication-login"
        assert len(auth.user_stories) == 1
        story = auth.user_stories[0]
        assert story.role == "team member"
        assert story.goal == "to sign in with my email"
        assert story.benefit == "my tasks stay private"
        assert [c.satisfied for c in auth.acceptance_criteria] == [True, True]

    def test_status_from_criteria_ratio(self, extractor, functional_tree):
        """Test status follows the share of satisfied criteria without a debt document."""
        features = extractor.extract_features(functional_tree)

        assert [f.status for f in features] == [
            FeatureStatus.COMPLETE,
            FeatureStatus.PARTIAL,
            FeatureStatus.MISSING,
            FeatureStatus.PARTIAL,
        ]

    def test_status_from_debt_document(self, extractor, functional_tree, debt_tree):
        """Test debt keywords win over the criteria ratio."""
        features = extractor.extract_features(functional_tree, debt_tree)

        by_name = {f.name: f.status for f in features}
        assert by_name["Notifications"] is FeatureStatus.MISSING
        assert by_name["Reporting"] is FeatureStatus.PARTIAL
        assert by_name["User Authentication & Login"] is FeatureStatus.COMPLETE

    def test_explicit_status_marker(self, extractor):
        """Test an explicit 'Status:' line in the debt document is honored."""
        feature = Feature(id="001", name="Search", slug="search", description="Find items.")
        debt = parse("## Search\n\nStatus: complete\n")

        assert extractor.detect_status(feature, debt) is FeatureStatus.COMPLETE

    def test_what_exists_write_up_is_partial(self, extractor):
        """Test a 'what exists / what is missing' passage counts as partial."""
        feature = Feature(id="001", name="Search", slug="search", description="Find items.")
        debt = parse("## Search\n\nWhat exists: basic lookup. Missing: filters.\n")

        assert extractor.detect_status(feature, debt) is FeatureStatus.PARTIAL

    def test_status_defaults_to_partial(self, extractor):
        """Test a feature with no evidence either way is partial."""
        feature = Feature(id="001", name="Search", slug="search", description="Find items.")

        assert extractor.detect_status(feature) is FeatureStatus.PARTIAL

    @pytest.mark.parametrize(
        "marks, expected",
        [
            ([True, True, True], FeatureStatus.COMPLETE),
            ([True, False, False], FeatureStatus.PARTIAL),
            ([False, False], FeatureStatus.MISSING),
        ],
    )
    def test_criteria_ratio(self, extractor, marks, expected):
        """Test each acceptance ratio maps to the right status."""
        feature = Feature(
            id="001",
            name="Search",
            slug="search",
            description="Find items.",
            acceptance_criteria=[AcceptanceCriterion(f"c{i}", mark) for i, mark in enumerate(marks)],
        )

        assert extractor.detect_status(feature) is expected

    def test_dependencies_resolved_by_name(self, extractor, functional_tree):
        """Test 'Depends on' phrases and name mentions link features."""
        features = extractor.extract_features(functional_tree)

        assert features[0].dependencies == []
        assert features[1].dependencies == ["001"]
        assert features[2].dependencies == ["002"]
        assert all(f.id not in f.dependencies for f in features)

    def test_unresolved_dependency_recorded(self, extractor):
        """Test references to unknown features are kept separately."""
        tree = parse(
            "# Features\n\n## Search\n\nFind items. Depends on Billing Engine.\n\n"
            "## Checkout\n\nPay. Depends on Search.\n\n## Wishlist\n\nSave items.\n"
        )

        features = extractor.extract_features(tree)

        assert features[0].dependencies == []
        assert features[0].unresolved_dependencies == ["Billing Engine"]
        assert features[1].dependencies == ["001"]

    def test_self_reference_dropped(self, extractor):
        """Test a feature never depends on itself."""
        tree = parse(
            "# Features\n\n## Search\n\nSearch depends on Search.\n\n## Checkout\n\nPay.\n\n## Wishlist\n\nSave.\n"
        )

        features = extractor.extract_features(tree)

        assert features[0].dependencies == []

    def test_technical_details_only_for_prescriptive(self, extractor):
        """Test technical details are collected on the prescriptive route only."""
        tree = parse(
            "# Features\n\n## Search\n\nFind items.\n\n### Technical Details\n\n- Uses full-text index\n\n"
            "## Checkout\n\nPay.\n\n## Wishlist\n\nSave.\n"
        )

        agnostic = extractor.extract_features(tree, route="agnostic")
        prescriptive = extractor.extract_features(tree, route="prescriptive")

        assert agnostic[0].technical_details is None
        assert prescriptive[0].technical_details == ["Uses full-text index"]
        assert prescriptive[1].technical_details == []


class TestDependencyCycles:
    """Test cases for dependency cycle detection."""

    def test_cycle_detected(self):
        """Test a two-feature cycle is reported once."""
        a = Feature(id="001", name="A", slug="a", description="", dependencies=["002"])
        b = Feature(id="002", name="B", slug="b", description="", dependencies=["001"])

        assert find_dependency_cycles([a, b]) == [["001", "002"]]

    def test_acyclic_graph(self):
        """Test a chain has no cycles."""
        a = Feature(id="001", name="A", slug="a", description="", dependencies=["002"])
        b = Feature(id="002", name="B", slug="b", description="", dependencies=["003"])
        c = Feature(id="003", name="C", slug="c", description="")

        assert find_dependency_cycles([a, b, c]) == []


class TestConstitutionExtraction:
    """Test cases for constitution extraction."""

    def test_sections_are_extracted(self, extractor, functional_tree):
        """Test values, standards and metrics come from their sections."""
        data = extractor.extract_constitution(functional_tree, "agnostic")

        assert data.purpose.startswith("Task Tracker helps small teams")
        assert data.values == [
            "Reliability: data is never lost",
            "Simplicity: every screen does one job",
            "Transparency: everyone sees the same status",
        ]
        assert len(data.development_standards) == 3
        assert data.quality_metrics[0].name == "Page load time"
        assert data.quality_metrics[0].target == "under 2 seconds"
        assert data.technology_stack is None
        assert data.placeholders == ["governance"]
        assert data.validate() == []

    def test_prescriptive_stack(self, extractor, functional_tree):
        """Test the technology stack is read on the prescriptive route."""
        data = extractor.extract_constitution(functional_tree, "prescriptive")

        assert data.technology_stack == ["Python", "FastAPI", "PostgreSQL"]
        assert data.validate() == []

    def test_prescriptive_without_stack_fails(self, extractor):
        """Test the prescriptive route requires a stack section."""
        tree = parse(f"{INTRO}\n")

        with pytest.raises(ExtractionError) as exc_info:
            extractor.extract_constitution(tree, "prescriptive")

        assert exc_info.value.phase == "constitution"

    def test_missing_sections_use_defaults(self, extractor):
        """Test defaults fill absent sections and are listed as placeholders."""
        data = extractor.extract_constitution(parse(f"{INTRO}\n"), "agnostic")

        assert len(data.values) == 3
        assert len(data.development_standards) == 3
        assert len(data.quality_metrics) == 2
        assert data.placeholders == ["values", "development_standards", "quality_metrics", "governance"]
        assert data.validate() == []

    def test_values_are_capped(self, extractor):
        """Test at most ten values are kept."""
        items = "\n".join(f"- Value {n}" for n in range(15))
        data = extractor.extract_constitution(parse(f"{INTRO}\n\n## Values\n\n{items}\n"), "agnostic")

        assert len(data.values) == MAX_VALUES

    def test_purpose_too_short(self, extractor):
        """Test a short introduction is rejected."""
        with pytest.raises(ExtractionError, match="too short"):
            extractor.extract_constitution(parse("# Title\n\nShort intro.\n"), "agnostic")

    def test_purpose_not_found(self, extractor):
        """Test a document without prose is rejected."""
        with pytest.raises(ExtractionError, match="Could not locate"):
            extractor.extract_constitution(parse("# Title\n\n- a list item\n"), "agnostic")

    def test_purpose_section_used_after_short_preamble(self, extractor):
        """Test a Purpose section is tried when the preamble is too short."""
        tree = parse(f"Draft.\n\n## Purpose\n\n{INTRO}\n")

        data = extractor.extract_constitution(tree, "agnostic")

        assert data.purpose == INTRO

    def test_purpose_truncated(self, extractor):
        """Test long purposes are cut at a word boundary."""
        tree = parse(("word " * 200).strip() + "\n")

        data = extractor.extract_constitution(tree, "agnostic")

        assert 50 <= len(data.purpose) <= 500
        assert data.purpose.endswith("word")


class TestPlanGeneration:
    """Test cases for implementation plans."""

    def test_plans_only_for_incomplete_features(self, extractor, functional_tree, debt_tree):
        """Test complete features get no plan."""
        features = extractor.extract_features(functional_tree, debt_tree)

        plans = extractor.generate_plans(features, debt_tree)

        assert sorted(plans) == ["002", "003", "004"]

    def test_one_task_per_unmet_criterion(self, extractor, functional_tree):
        """Test tasks mirror the unmet acceptance criteria."""
        features = extractor.extract_features(functional_tree)

        plan = extractor.generate_plans(features)["002"]

        assert [task.description for task in plan.tasks] == [
            "Implement: Tasks can be assigned to a team member",
            "Implement: Closed tasks are archived",
        ]
        assert [task.id for task in plan.tasks] == ["T1", "T2"]
        assert [task.dependencies for task in plan.tasks] == [[], ["T1"]]
        assert plan.dependencies == ["001"]
        assert "Acceptance criteria:" in plan.target_state

    def test_feature_without_criteria_gets_single_task(self, extractor, functional_tree):
        """Test a feature with no criteria gets one eight-hour task."""
        features = extractor.extract_features(functional_tree)

        plan = extractor.generate_plans(features)["004"]

        assert len(plan.tasks) == 1
        assert plan.tasks[0].estimated_hours == 8
        assert plan.estimated_effort == "8 hours (1 day)"

    def test_risks_from_debt(self, extractor, functional_tree, debt_tree):
        """Test debt passages become risks and the current state."""
        features = extractor.extract_features(functional_tree, debt_tree)

        plan = extractor.generate_plans(features, debt_tree)["003"]

        assert "No email provider is configured" in plan.current_state
        assert plan.risks[0].description.startswith("Known technical debt:")
        assert plan.risks[0].probability == "high"
        assert plan.risks[-1].description.startswith("Depends on features 002")

    @pytest.mark.parametrize(
        "description, hours",
        [
            ("Short task", 2),
            ("A task that takes a medium amount of words here", 4),
            ("A task with a long description that keeps going on and on for many more words than usual", 8),
        ],
    )
    def test_estimate_hours(self, description, hours):
        """Test effort estimates scale with description length."""
        assert SpecExtractor.estimate_hours(description) == hours
