"""Structured extraction from parsed reverse-engineering documents.

The input documents are free-form prose, so every decision here is a
heuristic. Each one is an ordered list of named strategies; a strategy
returns a result or ``None`` ("no opinion") and the first definite result
wins.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import normalize_route
from .errors import ExtractionError
from .markdown import find_section, list_items, section_body
from .models import (
    HEADING,
    LIST_ITEM,
    PARAGRAPH,
    AcceptanceCriterion,
    ConstitutionData,
    DocumentTree,
    Feature,
    FeatureStatus,
    ImplementationPlan,
    Node,
    QualityMetric,
    Risk,
    Task,
    UserStory,
)

logger = logging.getLogger("specgen.extractor")

MIN_PURPOSE_LENGTH = 50
MAX_PURPOSE_LENGTH = 500
MIN_VALUES = 3
MAX_VALUES = 10
MIN_STANDARDS = 3
MIN_METRICS = 2
MIN_FEATURE_CANDIDATES = 3

DEFAULT_VALUES = [
    "Clarity: the specification is the source of truth for behavior",
    "Quality: every change is verified by automated tests",
    "Simplicity: prefer the smallest design that meets the requirements",
]
DEFAULT_STANDARDS = [
    "All changes are peer reviewed before merge",
    "New behavior is covered by automated tests",
    "Public interfaces are documented alongside the code",
]
DEFAULT_METRICS = [
    QualityMetric("Test coverage", ">= 80% of core logic", "Coverage report in CI"),
    QualityMetric("Defect rate", "No known critical defects at release", "Issue tracker review"),
]
DEFAULT_GOVERNANCE = [
    "Decisions are made collaboratively with stakeholder input",
    "Changes require code review and passing tests",
    "Conflicts are resolved through discussion and consensus",
]

PURPOSE_TITLE = re.compile(r"\b(purpose|overview|introduction|summary|about)\b", re.IGNORECASE)
VALUES_TITLE = re.compile(r"\b(values|principles)\b", re.IGNORECASE)
STANDARDS_TITLE = re.compile(r"\b(standards|conventions|guidelines)\b", re.IGNORECASE)
METRICS_TITLE = re.compile(r"\b(metrics|performance)\b", re.IGNORECASE)
GOVERNANCE_TITLE = re.compile(r"\bgovernance\b", re.IGNORECASE)
STACK_TITLE = re.compile(r"\b(tech(nical|nology)?\s+stack|technolog(y|ies)|stack)\b", re.IGNORECASE)
FEATURES_TITLE = re.compile(r"^(key\s+|core\s+)?features$", re.IGNORECASE)
TECHNICAL_TITLE = re.compile(r"\btechnical\b|\bimplementation\b", re.IGNORECASE)

STRUCTURAL_TITLE = re.compile(
    r"^(table of contents|contents|overview|purpose|introduction|summary|about|features|key features|"
    r"core features|user stories|acceptance criteria|(core )?values|principles|(development )?standards|"
    r"(quality )?metrics|performance|governance|tech(nical|nology)? stack|technolog(y|ies)|"
    r"non-functional requirements|functional requirements|requirements|technical requirements|"
    r"technical details|dependencies|assumptions|constraints|glossary|appendix|references|notes)$",
    re.IGNORECASE,
)

USER_STORY = re.compile(r"^as an?\s+(.+?),\s*i want\s+(.+?),?\s+so that\s+(.+?)\.?$", re.IGNORECASE)
CHECKBOX = re.compile(r"^\[([ xX])\]\s+(.+)$")
NUMBERED_PREFIX = re.compile(r"^(?:F?\d+[.):]\s*|Feature\s+\d+\s*[:.-]\s*)", re.IGNORECASE)
DEPENDS_ON = re.compile(r"\b(?:depends\s+on|dependencies\s*:)\s*([^.;\n]+)", re.IGNORECASE)
METADATA_LINE = re.compile(r"^\*\*[^*]{1,40}:?\*\*:?\s")

MISSING_WORDS = ("not implemented", "not started", "missing", "absent", "unimplemented")
PARTIAL_WORDS = ("incomplete", "partial", "partially", "in progress", "work in progress")
EXPLICIT_STATUS = (
    (re.compile(r"status:\s*(complete|done)|✅\s*complete", re.IGNORECASE), FeatureStatus.COMPLETE),
    (re.compile(r"status:\s*partial|⚠️?\s*partial", re.IGNORECASE), FeatureStatus.PARTIAL),
    (re.compile(r"status:\s*missing|❌\s*missing", re.IGNORECASE), FeatureStatus.MISSING),
)


def slugify(name: str) -> str:
    """Lower-case ``name`` and collapse non-alphanumeric runs to ``-``."""
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def clean_inline(text: str) -> str:
    """Strip emphasis and code markers from a heading or list item."""
    text = re.sub(r"(\*\*|__|`)", "", text)
    return text.strip().strip("*").strip()


def _name_pattern(name: str) -> re.Pattern[str]:
    return re.compile(rf"(?<!\w){re.escape(name)}(?!\w)", re.IGNORECASE)


def _truncate_at_word(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    cut = text[:limit]
    boundary = cut.rfind(" ")
    if boundary >= MIN_PURPOSE_LENGTH:
        cut = cut[:boundary]
    return cut.rstrip(" ,;:-")


@dataclass(frozen=True, slots=True)
class FeatureCandidate:
    """A heading or list item that looks like a feature, with its body."""

    name: str
    line: int
    body: Tuple[Node, ...]
    summary: str = ""


FeatureStrategy = Callable[[Sequence[Node]], Optional[List[FeatureCandidate]]]
StatusStrategy = Callable[[Feature, Optional[DocumentTree]], Optional[FeatureStatus]]


class SpecExtractor:
    """Turn parsed documents into constitution, feature and plan entities."""

    def __init__(self):
        self.purpose_strategies: List[Tuple[str, Callable[[Sequence[Node]], Optional[str]]]] = [
            ("leading-paragraphs", self._purpose_from_preamble),
            ("purpose-section", self._purpose_from_section),
            ("first-section", self._purpose_from_first_section),
        ]
        self.feature_strategies: List[Tuple[str, FeatureStrategy]] = [
            ("features-section", self._features_section_headings),
            ("level-2-headings", lambda nodes: self._headings_as_features(nodes, 2)),
            ("level-3-headings", lambda nodes: self._headings_as_features(nodes, 3)),
            ("numbered-list", self._numbered_items_as_features),
        ]
        self.status_strategies: List[Tuple[str, StatusStrategy]] = [
            ("debt-keywords", self._status_from_debt),
            ("acceptance-ratio", self._status_from_criteria),
            ("default", lambda feature, debt_tree: FeatureStatus.PARTIAL),
        ]

    # ------------------------------------------------------------------
    # Constitution
    # ------------------------------------------------------------------

    def extract_constitution(self, tree: DocumentTree, route: str) -> ConstitutionData:
        """Build :class:`ConstitutionData` from the functional specification."""
        route = normalize_route(route)
        nodes = tree.nodes
        placeholders: List[str] = []

        purpose = self._extract_purpose(nodes)

        values = self._section_items(nodes, VALUES_TITLE)[:MAX_VALUES]
        if len(values) < MIN_VALUES:
            values = self._top_up(values, DEFAULT_VALUES, MIN_VALUES)
            placeholders.append("values")

        standards = self._section_items(nodes, STANDARDS_TITLE)
        if len(standards) < MIN_STANDARDS:
            standards = self._top_up(standards, DEFAULT_STANDARDS, MIN_STANDARDS)
            placeholders.append("development_standards")

        metrics = [self._parse_metric(item) for item in self._section_items(nodes, METRICS_TITLE)]
        if len(metrics) < MIN_METRICS:
            known = {metric.name.lower() for metric in metrics}
            for default in DEFAULT_METRICS:
                if len(metrics) >= MIN_METRICS:
                    break
                if default.name.lower() not in known:
                    metrics.append(QualityMetric(default.name, default.target, default.measurement))
            placeholders.append("quality_metrics")

        governance = self._extract_governance(nodes)
        if not governance:
            governance = list(DEFAULT_GOVERNANCE)
            placeholders.append("governance")

        technology_stack = None
        if route == "prescriptive":
            technology_stack = self._extract_stack(nodes)
            if not technology_stack:
                raise ExtractionError(
                    "Technology stack is required for the prescriptive route but no "
                    "'Technology Stack' section was found",
                    "constitution",
                )

        if placeholders:
            logger.info(f"Constitution fields filled with defaults: {', '.join(placeholders)}")

        return ConstitutionData(
            purpose=purpose,
            values=values,
            development_standards=standards,
            quality_metrics=metrics,
            governance=governance,
            route=route,
            technology_stack=technology_stack,
            placeholders=placeholders,
        )

    def _extract_purpose(self, nodes: Sequence[Node]) -> str:
        found_any = False
        for name, strategy in self.purpose_strategies:
            text = strategy(nodes)
            if not text:
                continue
            found_any = True
            if len(text) >= MIN_PURPOSE_LENGTH:
                logger.debug(f"Purpose taken from strategy '{name}'")
                return _truncate_at_word(text, MAX_PURPOSE_LENGTH)

        if found_any:
            raise ExtractionError(
                f"Purpose text is too short; at least {MIN_PURPOSE_LENGTH} characters are required",
                "constitution",
            )
        raise ExtractionError(
            "Could not locate the project purpose: add an introductory paragraph or a 'Purpose' section",
            "constitution",
        )

    @staticmethod
    def _join_paragraphs(nodes: Sequence[Node]) -> Optional[str]:
        texts = [
            clean_inline(node.text)
            for node in nodes
            if node.kind == PARAGRAPH and not METADATA_LINE.match(node.text)
        ]
        text = " ".join(part for part in texts if part)
        return text or None

    def _purpose_from_preamble(self, nodes: Sequence[Node]) -> Optional[str]:
        preamble = []
        for node in nodes:
            if node.kind == HEADING:
                break
            preamble.append(node)
        return self._join_paragraphs(preamble)

    def _purpose_from_section(self, nodes: Sequence[Node]) -> Optional[str]:
        section = find_section(nodes, PURPOSE_TITLE)
        if section is None:
            return None
        return self._join_paragraphs([node for node in section.nodes if node.kind != HEADING])

    def _purpose_from_first_section(self, nodes: Sequence[Node]) -> Optional[str]:
        for index, node in enumerate(nodes):
            if node.kind == HEADING:
                body = []
                # stop at any sub-heading: only the section's own lead text
                for child in nodes[index + 1:]:
                    if child.kind == HEADING:
                        break
                    body.append(child)
                text = self._join_paragraphs(body)
                if text:
                    return text
        return None

    @staticmethod
    def _section_items(nodes: Sequence[Node], pattern: re.Pattern[str]) -> List[str]:
        section = find_section(nodes, pattern)
        if section is None:
            return []
        items = []
        for text in list_items(section.nodes, top_level_only=True):
            item = clean_inline(text)
            if item and item not in items:
                items.append(item)
        return items

    @staticmethod
    def _top_up(items: List[str], defaults: Sequence[str], minimum: int) -> List[str]:
        result = list(items)
        for default in defaults:
            if len(result) >= minimum:
                break
            if default not in result:
                result.append(default)
        return result

    @staticmethod
    def _parse_metric(item: str) -> QualityMetric:
        name, sep, target = item.partition(":")
        if sep and name.strip() and target.strip():
            return QualityMetric(name=name.strip(), target=target.strip())
        return QualityMetric(name=item, target="As specified")

    @staticmethod
    def _extract_governance(nodes: Sequence[Node]) -> List[str]:
        section = find_section(nodes, GOVERNANCE_TITLE)
        if section is None:
            return []
        rules = [clean_inline(text) for text in list_items(section.nodes, top_level_only=True)]
        if not rules:
            rules = [clean_inline(node.text) for node in section.nodes if node.kind == PARAGRAPH]
        return [rule for rule in rules if rule]

    @staticmethod
    def _extract_stack(nodes: Sequence[Node]) -> List[str]:
        section = find_section(nodes, STACK_TITLE)
        if section is None:
            return []
        names: List[str] = []
        for node in section.nodes:
            if node.kind not in (LIST_ITEM, PARAGRAPH):
                continue
            text = clean_inline(node.text)
            _, sep, rest = text.partition(":")
            if node.kind == PARAGRAPH and not sep:
                continue
            for part in re.split(r",|\s+and\s+", rest if sep else text):
                part = part.strip().rstrip(".")
                if part and part not in names:
                    names.append(part)
        return names

    # ------------------------------------------------------------------
    # Features
    # ------------------------------------------------------------------

    def extract_features(
        self,
        tree: DocumentTree,
        debt_tree: Optional[DocumentTree] = None,
        route: Optional[str] = None,
    ) -> List[Feature]:
        """Detect features, then fill in stories, criteria, status and dependencies."""
        route = normalize_route(route) if route is not None else None
        tier, candidates = self._detect_candidates(tree.nodes)
        logger.info(f"Detected {len(candidates)} feature candidates using strategy '{tier}'")

        features: List[Feature] = []
        used_slugs: Dict[str, int] = {}
        for position, candidate in enumerate(candidates, start=1):
            slug = slugify(candidate.name) or f"feature-{position:03d}"
            if slug in used_slugs:
                used_slugs[slug] += 1
                slug = f"{slug}-{used_slugs[slug]}"
            used_slugs.setdefault(slug, 1)

            feature = Feature(
                id=f"{position:03d}",
                name=candidate.name,
                slug=slug,
                description=self._description(candidate),
                user_stories=self._user_stories(candidate.body),
                acceptance_criteria=self._acceptance_criteria(candidate.body),
                technical_details=self._technical_details(candidate.body) if route == "prescriptive" else None,
                source_line=candidate.line,
            )
            feature.status = self.detect_status(feature, debt_tree)
            features.append(feature)

        self._link_dependencies(features, candidates)
        return features

    def _detect_candidates(self, nodes: Sequence[Node]) -> Tuple[str, List[FeatureCandidate]]:
        fallback: Optional[Tuple[str, List[FeatureCandidate]]] = None
        for name, strategy in self.feature_strategies:
            candidates = strategy(nodes)
            if not candidates:
                continue
            if len(candidates) >= MIN_FEATURE_CANDIDATES:
                return name, candidates
            if fallback is None:
                fallback = (name, candidates)
        if fallback is not None:
            return fallback
        raise ExtractionError(
            "No features found: add a 'Features' section with one heading per feature",
            "features",
            {"tried": [name for name, _ in self.feature_strategies]},
        )

    @staticmethod
    def _heading_candidate(nodes: Sequence[Node], index: int) -> FeatureCandidate:
        heading = nodes[index]
        name = clean_inline(NUMBERED_PREFIX.sub("", heading.text)) or clean_inline(heading.text)
        return FeatureCandidate(name=name, line=heading.line, body=tuple(section_body(nodes, index)))

    def _features_section_headings(self, nodes: Sequence[Node]) -> Optional[List[FeatureCandidate]]:
        for start, node in enumerate(nodes):
            if node.kind == HEADING and FEATURES_TITLE.match(clean_inline(node.text)):
                break
        else:
            return None

        end = start + 1 + len(section_body(nodes, start))
        level = nodes[start].level + 1
        return [
            self._heading_candidate(nodes, index)
            for index in range(start + 1, end)
            if nodes[index].kind == HEADING and nodes[index].level == level
        ] or None

    def _headings_as_features(self, nodes: Sequence[Node], level: int) -> Optional[List[FeatureCandidate]]:
        return [
            self._heading_candidate(nodes, index)
            for index, node in enumerate(nodes)
            if node.kind == HEADING
            and node.level == level
            and not STRUCTURAL_TITLE.match(clean_inline(node.text).rstrip(":"))
        ] or None

    @staticmethod
    def _numbered_items_as_features(nodes: Sequence[Node]) -> Optional[List[FeatureCandidate]]:
        starts = [
            index
            for index, node in enumerate(nodes)
            if node.kind == LIST_ITEM and node.ordered and node.indent == 0
        ]
        candidates = []
        for position, index in enumerate(starts):
            limit = starts[position + 1] if position + 1 < len(starts) else len(nodes)
            body = []
            for node in nodes[index + 1:limit]:
                if node.kind == HEADING:
                    break
                body.append(node)
            text = clean_inline(nodes[index].text)
            name, summary = text, ""
            for separator in (":", " - ", " – "):
                head, sep, tail = text.partition(separator)
                if sep and head.strip():
                    name, summary = clean_inline(head), tail.strip()
                    break
            candidates.append(FeatureCandidate(name=name, line=nodes[index].line, body=tuple(body), summary=summary))
        return candidates or None

    @staticmethod
    def _description(candidate: FeatureCandidate) -> str:
        for node in candidate.body:
            if node.kind == HEADING:
                break
            if node.kind == PARAGRAPH and not USER_STORY.match(clean_inline(node.text)):
                return clean_inline(node.text)
        if candidate.summary:
            return candidate.summary
        return "No description available"

    @staticmethod
    def _user_stories(body: Sequence[Node]) -> List[UserStory]:
        stories = []
        for node in body:
            if node.kind not in (PARAGRAPH, LIST_ITEM):
                continue
            text = clean_inline(node.text)
            match = USER_STORY.match(text)
            if match:
                role, goal, benefit = (group.strip() for group in match.groups())
                stories.append(UserStory(role=role, goal=goal, benefit=benefit, raw=text))
        return stories

    @staticmethod
    def _acceptance_criteria(body: Sequence[Node]) -> List[AcceptanceCriterion]:
        criteria = []
        for node in body:
            if node.kind != LIST_ITEM:
                continue
            match = CHECKBOX.match(node.text)
            if match:
                criteria.append(AcceptanceCriterion(
                    description=clean_inline(match.group(2)),
                    satisfied=match.group(1).lower() == "x",
                ))
        return criteria

    @staticmethod
    def _technical_details(body: Sequence[Node]) -> List[str]:
        details: List[str] = []
        for index, node in enumerate(body):
            if node.kind == HEADING and TECHNICAL_TITLE.search(node.text):
                details.extend(
                    clean_inline(child.text)
                    for child in section_body(body, index)
                    if child.kind == LIST_ITEM
                )
        return details

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def detect_status(self, feature: Feature, debt_tree: Optional[DocumentTree] = None) -> FeatureStatus:
        for name, strategy in self.status_strategies:
            status = strategy(feature, debt_tree)
            if status is not None:
                logger.debug(f"Feature {feature.id} status '{status.value}' from strategy '{name}'")
                return status
        return FeatureStatus.PARTIAL

    def _status_from_debt(self, feature: Feature, debt_tree: Optional[DocumentTree]) -> Optional[FeatureStatus]:
        passages = self.debt_passages(feature.name, debt_tree)
        if not passages:
            return None

        text = "\n".join(passages)
        for pattern, status in EXPLICIT_STATUS:
            if pattern.search(text):
                return status

        lowered = text.lower()
        if any(word in lowered for word in MISSING_WORDS):
            # "What exists / What's missing" write-ups describe partial work
            if "what exists" in lowered or "what's implemented" in lowered:
                return FeatureStatus.PARTIAL
            return FeatureStatus.MISSING
        if any(word in lowered for word in PARTIAL_WORDS):
            return FeatureStatus.PARTIAL
        return None

    @staticmethod
    def _status_from_criteria(feature: Feature, debt_tree: Optional[DocumentTree]) -> Optional[FeatureStatus]:
        if not feature.acceptance_criteria:
            return None
        satisfied = sum(1 for criterion in feature.acceptance_criteria if criterion.satisfied)
        if satisfied == len(feature.acceptance_criteria):
            return FeatureStatus.COMPLETE
        if satisfied == 0:
            return FeatureStatus.MISSING
        return FeatureStatus.PARTIAL

    @staticmethod
    def debt_passages(name: str, debt_tree: Optional[DocumentTree]) -> List[str]:
        """Debt-document passages mentioning ``name``.

        A matching heading contributes its whole section; any other matching
        node contributes its own text.
        """
        if debt_tree is None or not name:
            return []
        pattern = _name_pattern(name)
        nodes = debt_tree.nodes
        passages = []
        covered_until = -1
        for index, node in enumerate(nodes):
            if index <= covered_until or not pattern.search(node.text):
                continue
            if node.kind == HEADING:
                body = section_body(nodes, index)
                covered_until = index + len(body)
                lines = [clean_inline(child.text) for child in body if child.text]
                passages.append("\n".join([clean_inline(node.text)] + lines))
            else:
                passages.append(clean_inline(node.text))
        return passages

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    def _link_dependencies(self, features: List[Feature], candidates: Sequence[FeatureCandidate]) -> None:
        lookup: Dict[str, str] = {}
        for feature in features:
            for key in (feature.name.lower(), feature.slug, feature.id, f"f{feature.id}"):
                lookup.setdefault(key, feature.id)

        for feature, candidate in zip(features, candidates):
            found: List[str] = []
            unresolved: List[str] = []

            phrases = [feature.description] + [
                clean_inline(node.text)
                for node in candidate.body
                if node.kind in (PARAGRAPH, LIST_ITEM) and DEPENDS_ON.search(node.text)
            ]
            for text in phrases:
                for match in DEPENDS_ON.finditer(text):
                    for reference in re.split(r",|\s+and\s+|/", match.group(1)):
                        reference = clean_inline(reference).strip(" .\"'")
                        if not reference:
                            continue
                        target = lookup.get(reference.lower()) or lookup.get(slugify(reference))
                        if target is None:
                            if reference not in unresolved:
                                unresolved.append(reference)
                        elif target not in found:
                            found.append(target)

            for other in features:
                if other.id != feature.id and other.id not in found:
                    if _name_pattern(other.name).search(feature.description):
                        found.append(other.id)

            feature.dependencies = [dep for dep in found if dep != feature.id]
            feature.unresolved_dependencies = unresolved
            if unresolved:
                logger.warning(f"Feature {feature.id} references unknown dependencies: {', '.join(unresolved)}")

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def generate_plans(
        self,
        features: Sequence[Feature],
        debt_tree: Optional[DocumentTree] = None,
    ) -> Dict[str, ImplementationPlan]:
        """One plan per feature that is not complete, keyed by feature id."""
        plans: Dict[str, ImplementationPlan] = {}
        for feature in features:
            if feature.is_complete:
                continue
            passages = self.debt_passages(feature.name, debt_tree)
            plans[feature.id] = ImplementationPlan(
                feature_id=feature.id,
                feature_name=feature.name,
                current_state=self._current_state(feature, passages),
                target_state=self._target_state(feature),
                tasks=self._tasks(feature),
                risks=self._risks(feature, passages),
                dependencies=list(feature.dependencies),
            )
        return plans

    @staticmethod
    def _current_state(feature: Feature, passages: Sequence[str]) -> str:
        if passages:
            return "\n\n".join(passages)
        if feature.status is FeatureStatus.MISSING:
            return "No existing implementation"
        return "Partial implementation exists; the technical debt analysis gives no further detail"

    @staticmethod
    def _target_state(feature: Feature) -> str:
        parts = [feature.description]
        if feature.acceptance_criteria:
            parts.append("")
            parts.append("Acceptance criteria:")
            parts.extend(f"- {criterion.description}" for criterion in feature.acceptance_criteria)
        return "\n".join(parts)

    @staticmethod
    def estimate_hours(description: str) -> int:
        words = len(description.split())
        if words <= 6:
            return 2
        if words <= 15:
            return 4
        return 8

    def _tasks(self, feature: Feature) -> List[Task]:
        unmet = feature.unmet_criteria()
        if not unmet:
            if feature.acceptance_criteria:
                description = f"Close the remaining gaps in {feature.name} noted in the technical debt analysis"
            else:
                description = f"Define acceptance criteria for and implement {feature.name}"
            return [Task(id="T1", description=description, estimated_hours=8)]

        # each criterion builds on the one listed before it
        return [
            Task(
                id=f"T{number}",
                description=f"Implement: {criterion.description}",
                estimated_hours=self.estimate_hours(criterion.description),
                dependencies=[f"T{number - 1}"] if number > 1 else [],
            )
            for number, criterion in enumerate(unmet, start=1)
        ]

    @staticmethod
    def _risks(feature: Feature, passages: Sequence[str]) -> List[Risk]:
        risks = []
        for passage in passages:
            summary = " ".join(passage.split())
            risks.append(Risk(
                description=f"Known technical debt: {_truncate_at_word(summary, 200)}",
                probability="high" if feature.status is FeatureStatus.MISSING else "medium",
                impact="medium",
                mitigation="Resolve the documented debt before building on this feature",
            ))

        if feature.dependencies:
            risks.append(Risk(
                description=f"Depends on features {', '.join(feature.dependencies)} which may not be complete",
                probability="medium",
                impact="high",
                mitigation="Verify dependency completion before starting",
            ))
        else:
            risks.append(Risk(
                description="Implementation may be more complex than estimated",
                probability="medium",
                impact="medium",
                mitigation="Break down tasks further if complexity increases",
            ))
        return risks


def find_dependency_cycles(features: Sequence[Feature]) -> List[List[str]]:
    """Return each dependency cycle as the list of feature ids on it.

    A cycle ``[a, b, c]`` means ``a -> b -> c -> a``; its last element's edge
    back to the first is the one that closes it.
    """
    graph = {feature.id: [dep for dep in feature.dependencies] for feature in features}
    white, grey, black = 0, 1, 2
    color = {node: white for node in graph}
    stack: List[str] = []
    cycles: List[List[str]] = []

    def visit(node: str) -> None:
        color[node] = grey
        stack.append(node)
        for target in graph[node]:
            if target not in graph:
                continue
            if color[target] == grey:
                cycles.append(stack[stack.index(target):])
            elif color[target] == white:
                visit(target)
        stack.pop()
        color[node] = black

    for node in graph:
        if color[node] == white:
            visit(node)
    return cycles
