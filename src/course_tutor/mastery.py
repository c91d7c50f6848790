"""Mastery predicates and topic/item progress updates."""
from dataclasses import dataclass
from typing import Optional

from course_tutor.models import (
    MASTERY_SUCCESSES, MAX_COMPREHENSION, SKIP_COMMAND,
    Attempt, ConceptProgress, Evaluation, ItemProgress, LearningSession, TopicProgress,
)

STRUGGLING_THRESHOLD = 2.0
ROLLING_WINDOW = 5


@dataclass(frozen=True)
class StrugglingItem:
    item: str
    average_comprehension: float
    success_count: int


def is_topic_mastered(progress: Optional[TopicProgress]) -> bool:
    return progress is not None and progress.comprehension >= MAX_COMPREHENSION


def is_item_mastered(progress: Optional[ItemProgress]) -> bool:
    return progress is not None and progress.success_count >= MASTERY_SUCCESSES


def get_concept_progress(session: LearningSession, concept: str) -> ConceptProgress:
    """Return the progress record for a concept, creating it on first use."""
    if concept not in session.concepts:
        session.concepts[concept] = ConceptProgress(concept=concept)
    return session.concepts[concept]


def topic_comprehension(progress: Optional[ConceptProgress], topics: list[str]) -> dict[str, int]:
    result = {}
    for topic in topics:
        tp = progress.topics.get(topic) if progress else None
        result[topic] = tp.comprehension if tp else 0
    return result


def unmastered_topics(progress: Optional[ConceptProgress], topics: list[str]) -> list[str]:
    if progress is None:
        return list(topics)
    return [t for t in topics if not is_topic_mastered(progress.topics.get(t))]


def record_topic_attempt(progress: ConceptProgress, topic: str, attempt: Attempt) -> TopicProgress:
    """Append an attempt; comprehension keeps the best score seen so far."""
    tp = progress.topics.setdefault(topic, TopicProgress(topic=topic))
    tp.attempts.append(attempt)
    score = max(0, min(MAX_COMPREHENSION, attempt.evaluation.comprehension))
    tp.comprehension = max(tp.comprehension, score)
    return tp


def apply_skip(progress: ConceptProgress, topics: list[str], question: str) -> Optional[str]:
    """Mark the first unmastered topic as understood.

    Returns the skipped topic, or None when every topic is already mastered.
    Only that one topic is touched.
    """
    remaining = unmastered_topics(progress, topics)
    if not remaining:
        return None
    topic = remaining[0]
    attempt = Attempt(
        question=question,
        answer=SKIP_COMMAND,
        evaluation=Evaluation(
            comprehension=MAX_COMPREHENSION,
            feedback="Topic skipped by learner",
            target_topic=topic,
        ),
    )
    record_topic_attempt(progress, topic, attempt)
    return topic


def rolling_average(progress: ItemProgress, window: int = ROLLING_WINDOW) -> Optional[float]:
    recent = progress.attempts[-window:]
    if not recent:
        return None
    return sum(a.evaluation.comprehension for a in recent) / len(recent)


def struggling_items(
    progress: Optional[ConceptProgress],
    threshold: float = STRUGGLING_THRESHOLD,
    window: int = ROLLING_WINDOW,
) -> list[StrugglingItem]:
    """Items whose recent comprehension average is at or below threshold, worst first."""
    if progress is None:
        return []
    found = []
    for item in progress.items.values():
        avg = rolling_average(item, window)
        if avg is not None and avg <= threshold:
            found.append(StrugglingItem(item.item, avg, item.success_count))
    return sorted(found, key=lambda s: (s.average_comprehension, s.success_count, s.item))
