"""Position-based spaced repetition.

Intervals are counted in cards, not days: each concept keeps a global
position counter that advances by one for every flashcard shown.
"""
import math
from dataclasses import dataclass
from typing import Optional

from course_tutor.errors import ValidationError
from course_tutor.models import (
    INITIAL_EASE, MASTERY_SUCCESSES, MAX_COMPREHENSION, MAX_EASE, MIN_EASE,
    Attempt, FlashcardScheduleEntry, ItemProgress,
)

PASSING_SCORE = 4


@dataclass(frozen=True)
class ReviewUpdate:
    """Everything one flashcard presentation changes, computed up front."""
    item: str
    attempt: Attempt
    position: int
    ease_factor: float
    interval: int
    due_position: int
    success_count: int

    @property
    def mastered(self) -> bool:
        return self.success_count >= MASTERY_SUCCESSES


def _check_score(score: int) -> None:
    if not isinstance(score, int) or not 0 <= score <= MAX_COMPREHENSION:
        raise ValidationError(f"Comprehension score must be an integer 0-5, got {score!r}")


def update_ease(score: int, ease: float) -> float:
    _check_score(score)
    if score <= 1:
        ease *= 0.8
    elif score <= 3:
        ease *= 0.85
    elif score == 5:
        ease *= 1.15
    return max(MIN_EASE, min(MAX_EASE, ease))


def compute_interval(score: int, ease: float) -> int:
    _check_score(score)
    if score <= 1:
        return 1
    if score <= 3:
        return max(2, math.floor(ease * 0.8))
    if score == 4:
        return math.ceil(ease * 3)
    return math.ceil(ease * 5)


def build_queue(items: list[str], progress: dict[str, ItemProgress]) -> list[FlashcardScheduleEntry]:
    """Build the round's queue from every item that still needs work."""
    queue = []
    for item in items:
        existing = progress.get(item)
        if existing is None:
            queue.append(FlashcardScheduleEntry(item=item))
            continue
        if existing.success_count >= MASTERY_SUCCESSES:
            continue
        queue.append(FlashcardScheduleEntry(
            item=item,
            ease_factor=existing.ease_factor or INITIAL_EASE,
            interval=existing.interval,
            due_position=existing.next_due_position,
            success_count=existing.success_count,
        ))
    return queue


def select_next(queue: list[FlashcardScheduleEntry], position: int) -> Optional[FlashcardScheduleEntry]:
    """Pick the next card, or None when the round is finished.

    Overdue cards come first, earliest due first. With nothing overdue the
    earliest upcoming card is shown anyway so the round keeps moving.
    """
    active = [e for e in queue if e.active]
    if not active:
        return None
    overdue = [e for e in active if e.due_position <= position]
    return min(overdue or active, key=lambda e: e.due_position)


def plan_review(entry: FlashcardScheduleEntry, score: int, position: int, attempt: Attempt) -> ReviewUpdate:
    """Calculate the result of one presentation.

    Args:
        entry: The card that was shown.
        score: Comprehension 0-5 from the evaluator.
        position: The concept's global position before this card.
        attempt: The recorded question/answer/evaluation.

    Returns:
        A ReviewUpdate; nothing is mutated here.
    """
    _check_score(score)
    new_position = position + 1
    ease = update_ease(score, entry.ease_factor)
    interval = compute_interval(score, ease)
    if score >= PASSING_SCORE:
        success = entry.success_count + 1
    else:
        success = 0
    return ReviewUpdate(
        item=entry.item,
        attempt=attempt,
        position=new_position,
        ease_factor=ease,
        interval=interval,
        due_position=new_position + interval,
        success_count=success,
    )
