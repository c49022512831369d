"""Per-product daily lifecycle update."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from rankpilot.logic.contribution import (
    ContributionEntry,
    ContributionSummary,
    analyze_contributions,
    apply_contribution_scores,
    summarize_contributions,
)
from rankpilot.logic.lifecycle import (
    TEST_TIMEOUT_DAYS,
    CandidateStatus,
    KeywordCandidate,
    LifecycleTransition,
    TestResult,
    group_by_status,
    handle_test_timeouts,
)
from rankpilot.logic.performance import RANK_DRIVEN, Evaluation, evaluate_batch
from rankpilot.search.models import RankSnapshot
from rankpilot.utils.dates import utcnow

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LifecycleSummary:
    total: int = 0
    newly_activated: int = 0
    newly_failed: int = 0
    newly_warning: int = 0
    recovered: int = 0
    timed_out: int = 0
    status_counts: dict[str, int] = field(default_factory=dict)


@dataclass(slots=True)
class LifecycleUpdate:
    product_id: str
    candidates: list[KeywordCandidate]
    changed: list[KeywordCandidate]
    transitions: list[LifecycleTransition]
    evaluations: list[Evaluation]
    contributions: list[ContributionEntry]
    contribution_summary: ContributionSummary
    summary: LifecycleSummary


def compute_lifecycle_update(
    product_id: str,
    candidates: Sequence[KeywordCandidate],
    snapshots: Mapping[str, RankSnapshot],
    *,
    now: datetime | None = None,
    timeout_days: int = TEST_TIMEOUT_DAYS,
) -> LifecycleUpdate:
    """Evaluate one product's candidates against the day's latest snapshots.

    Testing candidates with no snapshot today are still checked for timeout.
    Contribution scores are recomputed over the resulting active/warning set.
    """
    now = now or utcnow()
    rank_driven = [c for c in candidates if c.status in RANK_DRIVEN]
    evaluations = evaluate_batch(rank_driven, snapshots, now=now, timeout_days=timeout_days)

    updated: dict[int, KeywordCandidate] = {c.id: c for c in candidates}
    changed_ids: set[int] = set()
    transitions: list[LifecycleTransition] = []
    summary = LifecycleSummary()

    for evaluation in evaluations:
        updated[evaluation.candidate.id] = evaluation.candidate
        changed_ids.add(evaluation.candidate.id)
        if not evaluation.transitioned:
            continue
        transition = evaluation.result.transition
        transitions.append(transition)
        _count(summary, transition, evaluation.candidate)

    evaluated = {e.candidate.id for e in evaluations}
    unevaluated = [c for c in rank_driven if c.id not in evaluated]
    for result in handle_test_timeouts(unevaluated, now=now, timeout_days=timeout_days):
        if not result.success:
            continue
        updated[result.candidate.id] = result.candidate
        changed_ids.add(result.candidate.id)
        transitions.append(result.transition)
        _count(summary, result.transition, result.candidate)

    contributions = analyze_contributions(updated.values())
    scored = apply_contribution_scores(updated.values(), contributions)
    for before, after in zip(updated.values(), scored):
        if after.contribution_score != before.contribution_score:
            changed_ids.add(after.id)
    final = list(scored)

    summary.total = len(final)
    summary.status_counts = {status.value: len(group) for status, group in group_by_status(final).items()}
    logger.info(
        "Product %s: %s evaluated, +%s active, +%s failed, +%s warning, %s recovered",
        product_id,
        len(evaluations),
        summary.newly_activated,
        summary.newly_failed,
        summary.newly_warning,
        summary.recovered,
    )
    return LifecycleUpdate(
        product_id=product_id,
        candidates=final,
        changed=[c for c in final if c.id in changed_ids],
        transitions=transitions,
        evaluations=evaluations,
        contributions=contributions,
        contribution_summary=summarize_contributions(contributions),
        summary=summary,
    )


def _count(summary: LifecycleSummary, transition: LifecycleTransition, candidate: KeywordCandidate) -> None:
    if transition.to_status is CandidateStatus.ACTIVE:
        if transition.from_status is CandidateStatus.WARNING:
            summary.recovered += 1
        else:
            summary.newly_activated += 1
    elif transition.to_status is CandidateStatus.FAILED:
        summary.newly_failed += 1
        if candidate.test_result is TestResult.TIMEOUT:
            summary.timed_out += 1
    elif transition.to_status is CandidateStatus.WARNING:
        summary.newly_warning += 1
