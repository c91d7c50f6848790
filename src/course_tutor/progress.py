"""Read-only progress projections for reports and outside consumers."""
from dataclasses import dataclass
from typing import Optional

from course_tutor import mastery
from course_tutor.models import (
    INITIAL_EASE, OVERVIEW_KEY, ConceptProgress, Course, LearningSession, Phase,
)
from course_tutor.sessions import load_course, load_session


@dataclass(frozen=True)
class ConceptMastery:
    concept: str
    mastered_items: int
    total_items: int
    mastered_topics: int
    total_topics: int
    average_comprehension: float
    skipped: bool = False

    @property
    def percentage(self) -> float:
        total = self.total_items + self.total_topics
        if total == 0:
            return 0.0
        return round((self.mastered_items + self.mastered_topics) / total * 100, 1)


@dataclass(frozen=True)
class ScheduleSnapshot:
    item: str
    ease_factor: float
    interval: int
    due_position: int
    success_count: int
    mastered: bool


@dataclass(frozen=True)
class CourseMastery:
    course: str
    phase: Phase
    overview: ConceptMastery
    concepts: tuple[ConceptMastery, ...]

    @property
    def percentage(self) -> float:
        mastered = sum(c.mastered_items + c.mastered_topics for c in self.concepts)
        total = sum(c.total_items + c.total_topics for c in self.concepts)
        return round(mastered / total * 100, 1) if total else 0.0


def get_mastery_label(percentage: float) -> str:
    if percentage >= 80:
        return "MASTERED"
    elif percentage >= 50:
        return "PROGRESSING"
    elif percentage > 0:
        return "STARTED"
    return "NOT STARTED"


def get_mastery_color(percentage: float) -> str:
    if percentage >= 80:
        return "green"
    elif percentage >= 50:
        return "yellow"
    elif percentage > 0:
        return "dark_orange"
    return "red"


def _progress(session: LearningSession, key: str) -> Optional[ConceptProgress]:
    return session.concepts.get(key)


def _mastery(name: str, progress: Optional[ConceptProgress], topics: list[str], items: list[str],
             skipped: bool = False) -> ConceptMastery:
    levels = mastery.topic_comprehension(progress, topics)
    item_progress = progress.items if progress else {}
    mastered_items = sum(1 for i in items if mastery.is_item_mastered(item_progress.get(i)))
    mastered_topics = len(topics) - len(mastery.unmastered_topics(progress, topics))
    average = round(sum(levels.values()) / len(levels), 2) if levels else 0.0
    return ConceptMastery(
        concept=name,
        mastered_items=mastered_items,
        total_items=len(items),
        mastered_topics=mastered_topics,
        total_topics=len(topics),
        average_comprehension=average,
        skipped=skipped,
    )


def concept_mastery(session: LearningSession, course: Course, concept_name: str) -> ConceptMastery:
    concept = course.concept(concept_name)
    return _mastery(concept.name, _progress(session, concept.name), concept.topics,
                    concept.memorize_items, concept.name in session.skipped_concepts)


def overview_mastery(session: LearningSession, course: Course) -> ConceptMastery:
    return _mastery("Overview", _progress(session, OVERVIEW_KEY), course.overview_topics, [])


def course_mastery(session: LearningSession, course: Course) -> CourseMastery:
    return CourseMastery(
        course=course.name,
        phase=session.phase,
        overview=overview_mastery(session, course),
        concepts=tuple(concept_mastery(session, course, c.name) for c in course.concepts),
    )


def struggling_items(session: LearningSession, concept_name: str) -> list[mastery.StrugglingItem]:
    return mastery.struggling_items(_progress(session, concept_name))


def unmastered_topics(session: LearningSession, concept_name: str, topics: list[str]) -> list[str]:
    return mastery.unmastered_topics(_progress(session, concept_name), topics)


def schedule_snapshot(session: LearningSession, course: Course, concept_name: str) -> list[ScheduleSnapshot]:
    """Ease, interval and due position for every item of a concept, in course order."""
    concept = course.concept(concept_name)
    progress = _progress(session, concept_name)
    items = progress.items if progress else {}
    snapshots = []
    for name in concept.memorize_items:
        ip = items.get(name)
        if ip is None:
            snapshots.append(ScheduleSnapshot(name, INITIAL_EASE, 0, 0, 0, False))
        else:
            snapshots.append(ScheduleSnapshot(
                name, ip.ease_factor, ip.interval, ip.next_due_position, ip.success_count,
                mastery.is_item_mastered(ip),
            ))
    return snapshots


def get_progress_report(db_path: str, user_id: str, course_id: str) -> dict:
    """Load a session and project everything a dashboard needs."""
    course = load_course(db_path, course_id)
    session = load_session(db_path, user_id, course_id)
    summary = course_mastery(session, course)
    return {
        "course_id": course_id,
        "course": summary.course,
        "phase": summary.phase.value,
        "percentage": summary.percentage,
        "label": get_mastery_label(summary.percentage),
        "overview": summary.overview,
        "concepts": list(summary.concepts),
        "struggling": {c.name: struggling_items(session, c.name) for c in course.concepts},
        "unmastered": {c.name: unmastered_topics(session, c.name, c.topics) for c in course.concepts},
        "schedule": {c.name: schedule_snapshot(session, course, c.name) for c in course.concepts},
    }
