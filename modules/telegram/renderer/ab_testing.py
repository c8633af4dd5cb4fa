"""
A/B Testing for Report Formats.

Runs experiments over report templates. Each caller is deterministically
bucketed into one variant per test:

    bucket = int(sha256(f"{caller_id}:{test_id}")) % 10000
    target = bucket / 10000 * total_weight

and the first variant whose cumulative weight exceeds `target` wins. The
same caller always lands in the same variant of a test, and variants
receive callers in proportion to their weights.

Variant modifications are applied on top of the regime template:
    section_priority      keep only sections of this priority
    section_ids           keep only these sections
    formatting            override Formatting fields
    interactive_elements  append extra buttons

The manager is owned by the BotServer; there is no module-level instance.

Usage:
    manager = ABTestManager.from_config(app_config.renderer.ab_testing)
    test = manager.create_from_template("CONCISE_VS_DETAILED")
    manager.start_test(test.id)
    messages = renderer.render(data, prefs, manager.running_tests())
    manager.record_event(test.id, "concise", "read")
"""

import hashlib
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from modules.backend.core.exceptions import NotFoundError, ValidationError
from modules.backend.core.logging import get_logger
from modules.backend.core.utils import utc_now
from modules.telegram.callbacks.common import CallbackAction
from modules.telegram.renderer.models import Formatting, Priority, ReportTemplate
from modules.telegram.renderer.templates import InteractiveElement

logger = get_logger(__name__)

BUCKETS = 10000

# Composite score weights, applied to rates in 0..1 (ratings are scaled from 1..5)
SCORE_WEIGHTS = {"read_rate": 0.4, "engagement_rate": 0.35, "avg_rating": 0.25}


class ABTestStatus(str, Enum):
    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


class ABTestEvent(str, Enum):
    SENT = "sent"
    READ = "read"
    ENGAGED = "engaged"
    RATED = "rated"


@dataclass
class VariantModifications:
    section_priority: Priority | None = None
    section_ids: tuple[str, ...] | None = None
    formatting: dict[str, Any] = field(default_factory=dict)
    interactive_elements: tuple[InteractiveElement, ...] = ()


@dataclass
class ABTestVariant:
    id: str
    name: str
    weight: float = 1.0
    modifications: VariantModifications = field(default_factory=VariantModifications)


@dataclass
class VariantMetrics:
    sent: int = 0
    read: int = 0
    engaged: int = 0
    rated: int = 0
    rating_total: float = 0.0

    @property
    def avg_rating(self) -> float:
        return self.rating_total / self.rated if self.rated else 0.0


@dataclass
class ABTest:
    id: str
    name: str
    description: str
    variants: list[ABTestVariant]
    status: ABTestStatus = ABTestStatus.DRAFT
    metrics: dict[str, VariantMetrics] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
    started_at: datetime | None = None
    ended_at: datetime | None = None

    def __post_init__(self) -> None:
        for variant in self.variants:
            self.metrics.setdefault(variant.id, VariantMetrics())

    @property
    def total_weight(self) -> float:
        return sum(v.weight for v in self.variants)

    def variant(self, variant_id: str) -> ABTestVariant:
        for v in self.variants:
            if v.id == variant_id:
                return v
        raise NotFoundError(f"Variant '{variant_id}' not found in test '{self.id}'")

    def record(self, variant_id: str, event: ABTestEvent | str, rating: float | None = None) -> None:
        """Increment a variant metric."""
        self.variant(variant_id)
        metrics = self.metrics[variant_id]
        event = ABTestEvent(event)
        if event is ABTestEvent.SENT:
            metrics.sent += 1
        elif event is ABTestEvent.READ:
            metrics.read += 1
        elif event is ABTestEvent.ENGAGED:
            metrics.engaged += 1
        else:
            if rating is None or not 1 <= rating <= 5:
                raise ValidationError("Rating must be between 1 and 5", details={"rating": rating})
            metrics.rated += 1
            metrics.rating_total += rating


@dataclass
class VariantResult:
    variant_id: str
    name: str
    sample_size: int
    read_rate: float
    engagement_rate: float
    avg_rating: float
    score: float


@dataclass
class ABTestResults:
    test_id: str
    status: ABTestStatus
    variants: list[VariantResult]
    conclusion: str = "insufficient_data"
    confidence: float = 0.0
    winner: str | None = None


def assign_variant(caller_id: int | str, test: ABTest) -> ABTestVariant:
    """
    Deterministically pick the caller's variant.

    Raises:
        ValidationError: If the test has no positive total weight
    """
    total = test.total_weight
    if not test.variants or total <= 0:
        raise ValidationError("A/B test needs variants with positive total weight", details={"test_id": test.id})

    digest = hashlib.sha256(f"{caller_id}:{test.id}".encode("utf-8")).hexdigest()
    target = (int(digest, 16) % BUCKETS) / BUCKETS * total

    cumulative = 0.0
    for variant in test.variants:
        cumulative += variant.weight
        if target < cumulative:
            return variant
    # Float rounding can leave target equal to the total
    return next(v for v in reversed(test.variants) if v.weight > 0)


def apply_variant(template: ReportTemplate, variant: ABTestVariant) -> ReportTemplate:
    """Return a copy of `template` with the variant's modifications applied."""
    mods = variant.modifications
    sections = list(template.sections)

    if mods.section_priority is not None:
        sections = [s for s in sections if s.priority is mods.section_priority]
    if mods.section_ids is not None:
        wanted = set(mods.section_ids)
        sections = [s for s in sections if s.id in wanted]

    formatting = template.formatting
    if mods.formatting:
        unknown = set(mods.formatting) - set(Formatting.__dataclass_fields__)
        if unknown:
            raise ValidationError("Unknown formatting override", details={"fields": sorted(unknown)})
        formatting = replace(formatting, **mods.formatting)

    return replace(
        template,
        template_id=f"{template.template_id}:{variant.id}",
        sections=sections,
        formatting=formatting,
        interactive_elements=[*template.interactive_elements, *mods.interactive_elements],
    )


def _concise_vs_detailed() -> list[ABTestVariant]:
    return [
        ABTestVariant(
            id="concise",
            name="Concise Format",
            modifications=VariantModifications(
                section_priority=Priority.HIGH,
                formatting={"compact_mode": True},
            ),
        ),
        ABTestVariant(
            id="detailed",
            name="Detailed Format",
            modifications=VariantModifications(formatting={"compact_mode": False}),
        ),
    ]


def _emoji_usage() -> list[ABTestVariant]:
    return [
        ABTestVariant(
            id="emoji_heavy",
            name="Heavy Emoji Usage",
            modifications=VariantModifications(formatting={"use_emojis": True, "bold_headers": True}),
        ),
        ABTestVariant(
            id="emoji_minimal",
            name="Minimal Emoji Usage",
            modifications=VariantModifications(formatting={"use_emojis": False, "bold_headers": False}),
        ),
    ]


def _interactive_elements() -> list[ABTestVariant]:
    return [
        ABTestVariant(
            id="full_interactive",
            name="Full Interactive",
            modifications=VariantModifications(interactive_elements=(
                InteractiveElement("💼 Positions", CallbackAction.SHOW_POSITIONS),
                InteractiveElement("📈 Market Analysis", CallbackAction.SHOW_MARKET_ANALYSIS),
            )),
        ),
        ABTestVariant(
            id="minimal_interactive",
            name="Minimal Interactive",
            modifications=VariantModifications(interactive_elements=(
                InteractiveElement("📄 Full Report", CallbackAction.SHOW_FULL_REPORT),
            )),
        ),
    ]


TEST_VARIANT_TEMPLATES = {
    "CONCISE_VS_DETAILED": ("Content Length Test", "Compare concise vs detailed report formats", _concise_vs_detailed),
    "EMOJI_USAGE": ("Emoji Usage Test", "Test impact of emoji usage on engagement", _emoji_usage),
    "INTERACTIVE_ELEMENTS": ("Interactive Elements Test", "Compare interactive element configurations", _interactive_elements),
}


class ABTestManager:
    """Lifecycle, metrics, and results for A/B tests."""

    def __init__(
        self,
        min_sample_size: int = 100,
        confidence_threshold: float = 0.8,
        minimum_effect_size: float = 0.05,
    ) -> None:
        self.min_sample_size = min_sample_size
        self.confidence_threshold = confidence_threshold
        self.minimum_effect_size = minimum_effect_size
        self._tests: dict[str, ABTest] = {}

    @classmethod
    def from_config(cls, ab_testing: Any) -> "ABTestManager":
        """
        Build the manager and register the tests listed under `tests`.

        Entries name one of TEST_VARIANT_TEMPLATES; those with `start` set
        are running as soon as the manager exists.
        """
        manager = cls(
            min_sample_size=ab_testing.min_sample_size,
            confidence_threshold=ab_testing.confidence_threshold,
            minimum_effect_size=ab_testing.minimum_effect_size,
        )
        for entry in getattr(ab_testing, "tests", ()):
            test = manager.create_from_template(entry.template, test_id=entry.id)
            if entry.start:
                manager.start_test(test.id)
        return manager

    def create_test(
        self,
        name: str,
        description: str,
        variants: list[ABTestVariant],
        test_id: str | None = None,
    ) -> ABTest:
        """
        Register a draft test.

        Raises:
            ValidationError: On missing variants, duplicate ids, negative
                weights, or a non-positive total weight
        """
        if not variants:
            raise ValidationError("A/B test needs at least one variant")
        ids = [v.id for v in variants]
        if len(set(ids)) != len(ids):
            raise ValidationError("Variant ids must be unique", details={"variants": ids})
        if any(v.weight < 0 for v in variants) or sum(v.weight for v in variants) <= 0:
            raise ValidationError("Variant weights must be non-negative with a positive total")

        test_id = test_id or f"test_{re.sub(r'[^a-z0-9]+', '_', name.lower()).strip('_')}_{int(utc_now().timestamp())}"
        if test_id in self._tests:
            raise ValidationError("A/B test already exists", details={"test_id": test_id})

        test = ABTest(id=test_id, name=name, description=description, variants=variants)
        self._tests[test_id] = test
        logger.info("A/B test created", extra={"test_id": test_id, "variants": ids})
        return test

    def create_from_template(self, template_name: str, test_id: str | None = None) -> ABTest:
        """Create a draft test from one of TEST_VARIANT_TEMPLATES."""
        try:
            name, description, factory = TEST_VARIANT_TEMPLATES[template_name]
        except KeyError as e:
            raise NotFoundError(f"Unknown A/B test template '{template_name}'") from e
        return self.create_test(name, description, factory(), test_id=test_id)

    def get_test(self, test_id: str) -> ABTest:
        try:
            return self._tests[test_id]
        except KeyError as e:
            raise NotFoundError(f"A/B test '{test_id}' not found") from e

    def running_tests(self) -> list[ABTest]:
        return [t for t in self._tests.values() if t.status is ABTestStatus.RUNNING]

    def _transition(self, test_id: str, allowed: set[ABTestStatus], target: ABTestStatus) -> ABTest:
        test = self.get_test(test_id)
        if test.status not in allowed:
            raise ValidationError(
                f"Cannot move test from {test.status.value} to {target.value}",
                details={"test_id": test_id},
            )
        test.status = target
        logger.info("A/B test status changed", extra={"test_id": test_id, "status": target.value})
        return test

    def start_test(self, test_id: str) -> ABTest:
        test = self._transition(test_id, {ABTestStatus.DRAFT, ABTestStatus.PAUSED}, ABTestStatus.RUNNING)
        if test.started_at is None:
            test.started_at = utc_now()
        return test

    def pause_test(self, test_id: str) -> ABTest:
        return self._transition(test_id, {ABTestStatus.RUNNING}, ABTestStatus.PAUSED)

    def end_test(self, test_id: str) -> ABTestResults:
        test = self._transition(
            test_id, {ABTestStatus.DRAFT, ABTestStatus.RUNNING, ABTestStatus.PAUSED}, ABTestStatus.COMPLETED,
        )
        test.ended_at = utc_now()
        return self.results(test_id)

    def assignment(self, caller_id: int | str, test_id: str) -> ABTestVariant:
        return assign_variant(caller_id, self.get_test(test_id))

    def record_event(
        self,
        test_id: str,
        variant_id: str,
        event: ABTestEvent | str,
        rating: float | None = None,
    ) -> None:
        self.get_test(test_id).record(variant_id, event, rating)

    def results(self, test_id: str) -> ABTestResults:
        """Per-variant rates, composite score, and winner when significant."""
        test = self.get_test(test_id)
        variants = [self._variant_result(v, test.metrics[v.id]) for v in test.variants]
        results = ABTestResults(test_id=test.id, status=test.status, variants=variants)

        if len(variants) < 2:
            results.conclusion = "insufficient_variants"
            return results
        if any(v.sample_size < self.min_sample_size for v in variants):
            return results

        ranked = sorted(variants, key=lambda v: v.score, reverse=True)
        difference = ranked[0].score - ranked[1].score
        results.confidence = min(difference / self.minimum_effect_size, 1.0) if self.minimum_effect_size > 0 else 1.0
        if results.confidence > self.confidence_threshold:
            results.conclusion = "significant_winner"
            results.winner = ranked[0].variant_id
        else:
            results.conclusion = "inconclusive"
        return results

    @staticmethod
    def _variant_result(variant: ABTestVariant, metrics: VariantMetrics) -> VariantResult:
        read_rate = metrics.read / metrics.sent if metrics.sent else 0.0
        engagement_rate = metrics.engaged / metrics.sent if metrics.sent else 0.0
        avg_rating = metrics.avg_rating
        score = (
            SCORE_WEIGHTS["read_rate"] * read_rate
            + SCORE_WEIGHTS["engagement_rate"] * engagement_rate
            + SCORE_WEIGHTS["avg_rating"] * (avg_rating / 5.0)
        )
        return VariantResult(
            variant_id=variant.id,
            name=variant.name,
            sample_size=metrics.sent,
            read_rate=read_rate,
            engagement_rate=engagement_rate,
            avg_rating=avg_rating,
            score=score,
        )
