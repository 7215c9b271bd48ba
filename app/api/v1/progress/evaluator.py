"""
Promotion evaluation over already-loaded rows. No database access here.

Belt order is defined by display_order only; ids and names never matter.
Requirement completion is dispatched on requirement type:
- ESSAY reads reviewed essays through an EssayLookup (completion is derived, never stored).
- Every other type reads the stored RequirementProgress row, whose is_complete may be a
  manual override of the numeric threshold.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence
from uuid import UUID

from app.core.datetime_utils import ensure_utc
from app.core.enums import RequirementType
from app.core.models import Belt, BeltRequirement, EssaySubmission, RequirementProgress

ZERO = Decimal("0")


@dataclass(frozen=True)
class Completion:
    current_value: Decimal
    is_complete: bool
    completed_at: Optional[datetime] = None
    # Essay backing an ESSAY requirement, if any
    essay_id: Optional[UUID] = None


@dataclass(frozen=True)
class RequirementStatus:
    requirement: BeltRequirement
    completion: Completion

    @property
    def is_required(self) -> bool:
        return bool(self.requirement.is_required)

    @property
    def is_complete(self) -> bool:
        return self.completion.is_complete


@dataclass(frozen=True)
class BeltStatus:
    belt: Belt
    is_achieved: bool
    is_current: bool


@dataclass
class PromotionEvaluation:
    current_belt: Optional[Belt]
    next_belt: Optional[Belt]
    all_belts: List[BeltStatus] = field(default_factory=list)
    requirements: List[RequirementStatus] = field(default_factory=list)
    ready_for_promotion: bool = False

    @property
    def highest_rank_achieved(self) -> bool:
        return self.next_belt is None


class EssayLookup:
    """
    Answers "which reviewed essay backs the ESSAY requirement of belt X?".

    An essay counts toward a belt when it has a score and either its belt test targets
    that belt, or it has no belt test and was submitted after the enrollment's last
    promotion (or enrollment date when never promoted).
    """

    def __init__(
        self,
        essays: Iterable[EssaySubmission],
        test_belts: Mapping[UUID, UUID],
        since: Optional[datetime],
    ) -> None:
        self._essays = list(essays)
        self._test_belts = dict(test_belts)
        self._since = ensure_utc(since)

    def _counts_for(self, essay: EssaySubmission, belt_id: UUID) -> bool:
        if essay.score is None:
            return False
        if essay.belt_test_id is not None:
            return self._test_belts.get(essay.belt_test_id) == belt_id
        if self._since is None:
            return True
        return ensure_utc(essay.submitted_at) >= self._since

    def best_for(self, belt_id: UUID) -> Optional[EssaySubmission]:
        candidates = [e for e in self._essays if self._counts_for(e, belt_id)]
        if not candidates:
            return None
        return max(candidates, key=lambda e: Decimal(e.score))


def _stored_completion(
    requirement: BeltRequirement,
    progress: Optional[RequirementProgress],
    essays: EssayLookup,
) -> Completion:
    if progress is None:
        return Completion(current_value=ZERO, is_complete=False)
    return Completion(
        current_value=Decimal(progress.current_value or 0),
        is_complete=bool(progress.is_complete),
        completed_at=progress.completed_at,
    )


def _essay_completion(
    requirement: BeltRequirement,
    progress: Optional[RequirementProgress],
    essays: EssayLookup,
) -> Completion:
    essay = essays.best_for(requirement.belt_id)
    if essay is None:
        return Completion(current_value=ZERO, is_complete=False)
    return Completion(
        current_value=Decimal(essay.score),
        is_complete=True,
        completed_at=essay.reviewed_at,
        essay_id=essay.id,
    )


CompletionStrategy = Callable[[BeltRequirement, Optional[RequirementProgress], EssayLookup], Completion]

COMPLETION_STRATEGIES: Dict[RequirementType, CompletionStrategy] = {
    RequirementType.MIN_ATTENDANCE: _stored_completion,
    RequirementType.TECHNIQUE: _stored_completion,
    RequirementType.TIME_IN_RANK: _stored_completion,
    RequirementType.MIN_AGE: _stored_completion,
    RequirementType.CUSTOM: _stored_completion,
    RequirementType.ESSAY: _essay_completion,
}


def evaluate_completion(
    requirement: BeltRequirement,
    progress: Optional[RequirementProgress],
    essays: EssayLookup,
) -> Completion:
    strategy = COMPLETION_STRATEGIES[RequirementType(requirement.type)]
    return strategy(requirement, progress, essays)


def is_manually_tracked(requirement_type: str) -> bool:
    """Whether staff log progress for this type directly (everything except ESSAY)."""
    return COMPLETION_STRATEGIES[RequirementType(requirement_type)] is _stored_completion


def threshold_met(current_value: Decimal, threshold: Optional[Decimal]) -> bool:
    """Default completion for numeric requirements; checkbox requirements (no threshold) never auto-complete."""
    if threshold is None:
        return False
    return Decimal(current_value) >= Decimal(threshold)


def find_next_belt(belts: Sequence[Belt], current_belt: Optional[Belt]) -> Optional[Belt]:
    """Lowest belt ranked strictly above current_belt, or the lowest belt when there is no rank yet."""
    floor = current_belt.display_order if current_belt is not None else None
    above = [b for b in belts if floor is None or b.display_order > floor]
    if not above:
        return None
    return min(above, key=lambda b: b.display_order)


def annotate_belts(belts: Sequence[Belt], current_belt: Optional[Belt]) -> List[BeltStatus]:
    ordered = sorted(belts, key=lambda b: b.display_order)
    if current_belt is None:
        return [BeltStatus(belt=b, is_achieved=False, is_current=False) for b in ordered]
    return [
        BeltStatus(
            belt=b,
            is_achieved=b.display_order <= current_belt.display_order,
            is_current=b.id == current_belt.id,
        )
        for b in ordered
    ]


def ready_for_promotion(next_belt: Optional[Belt], requirements: Sequence[RequirementStatus]) -> bool:
    """
    True iff there is a next belt, it has at least one requirement, and every required
    requirement is complete. Optional ones never block.
    """
    if next_belt is None or not requirements:
        return False
    return all(r.is_complete for r in requirements if r.is_required)


def evaluate(
    belts: Sequence[Belt],
    current_belt: Optional[Belt],
    requirements_by_belt: Mapping[UUID, Sequence[BeltRequirement]],
    progress_rows: Iterable[RequirementProgress],
    essays: EssayLookup,
) -> PromotionEvaluation:
    """
    Build the full evaluation for one enrollment.

    requirements_by_belt maps belt id -> requirements; only the next belt's entry is read.
    """
    next_belt = find_next_belt(belts, current_belt)
    statuses: List[RequirementStatus] = []
    if next_belt is not None:
        by_requirement = {p.requirement_id: p for p in progress_rows}
        for requirement in requirements_by_belt.get(next_belt.id, ()):
            completion = evaluate_completion(requirement, by_requirement.get(requirement.id), essays)
            statuses.append(RequirementStatus(requirement=requirement, completion=completion))

    return PromotionEvaluation(
        current_belt=current_belt,
        next_belt=next_belt,
        all_belts=annotate_belts(belts, current_belt),
        requirements=statuses,
        ready_for_promotion=ready_for_promotion(next_belt, statuses),
    )
