# tests/test_scheduling.py
import pytest

from course_tutor.errors import ValidationError
from course_tutor.models import MAX_EASE, MIN_EASE, Attempt, Evaluation, FlashcardScheduleEntry, ItemProgress
from course_tutor.scheduling import build_queue, compute_interval, plan_review, select_next, update_ease


def _attempt(score):
    return Attempt(question="q", answer="a", evaluation=Evaluation(comprehension=score, feedback=""))


def test_update_ease_by_score():
    assert update_ease(0, 2.5) == pytest.approx(2.0)
    assert update_ease(1, 2.5) == pytest.approx(2.0)
    assert update_ease(2, 2.5) == pytest.approx(2.125)
    assert update_ease(3, 2.5) == pytest.approx(2.125)
    assert update_ease(4, 2.5) == 2.5
    assert update_ease(5, 2.5) == pytest.approx(2.875)


def test_ease_is_clamped():
    assert update_ease(0, MIN_EASE) == MIN_EASE
    assert update_ease(5, 3.9) == MAX_EASE


def test_ease_stays_in_bounds_for_any_score_sequence():
    ease = 2.5
    for score in [5, 5, 5, 5, 5, 5, 0, 0, 0, 0, 0, 0, 0, 3, 5, 1, 4, 5, 5]:
        ease = update_ease(score, ease)
        assert MIN_EASE <= ease <= MAX_EASE


def test_compute_interval():
    assert compute_interval(0, 2.0) == 1
    assert compute_interval(1, 2.0) == 1
    assert compute_interval(2, 2.125) == 2  # max(2, floor(1.7))
    assert compute_interval(3, 4.0) == 3
    assert compute_interval(4, 2.875) == 9
    assert compute_interval(5, 2.875) == 15


def test_invalid_score_rejected():
    with pytest.raises(ValidationError):
        update_ease(6, 2.5)
    with pytest.raises(ValidationError):
        compute_interval(-1, 2.5)


def test_fresh_item_mastered_in_two_presentations():
    """5 then 4: ease 2.875, due 16 then 25, removed after the second."""
    entry = FlashcardScheduleEntry(item="Mitochondria")
    first = plan_review(entry, 5, position=0, attempt=_attempt(5))
    assert first.position == 1
    assert first.ease_factor == pytest.approx(2.875)
    assert first.interval == 15
    assert first.due_position == 16
    assert first.success_count == 1
    assert not first.mastered

    entry.ease_factor, entry.due_position, entry.success_count = first.ease_factor, first.due_position, 1
    second = plan_review(entry, 4, position=15, attempt=_attempt(4))
    assert second.position == 16
    assert second.ease_factor == pytest.approx(2.875)
    assert second.interval == 9
    assert second.due_position == 25
    assert second.success_count == 2
    assert second.mastered


def test_fresh_item_low_score():
    update = plan_review(FlashcardScheduleEntry(item="Ribosome"), 1, position=0, attempt=_attempt(1))
    assert update.ease_factor == pytest.approx(2.0)
    assert update.interval == 1
    assert update.success_count == 0


def test_failure_resets_success_count():
    entry = FlashcardScheduleEntry(item="Ribosome", success_count=1)
    update = plan_review(entry, 3, position=4, attempt=_attempt(3))
    assert update.success_count == 0
    assert not update.mastered


def test_select_next_prefers_earliest_overdue():
    queue = [
        FlashcardScheduleEntry(item="a", due_position=3),
        FlashcardScheduleEntry(item="b", due_position=1),
        FlashcardScheduleEntry(item="c", due_position=2),
    ]
    assert select_next(queue, position=2).item == "b"


def test_select_next_falls_back_to_earliest_upcoming():
    queue = [
        FlashcardScheduleEntry(item="a", due_position=9),
        FlashcardScheduleEntry(item="b", due_position=6),
    ]
    assert select_next(queue, position=2).item == "b"


def test_select_next_never_returns_mastered():
    queue = [
        FlashcardScheduleEntry(item="done", due_position=0, success_count=2),
        FlashcardScheduleEntry(item="open", due_position=50, success_count=1),
    ]
    assert select_next(queue, position=10).item == "open"
    queue[1].success_count = 2
    assert select_next(queue, position=10) is None


def test_build_queue_seeds_from_progress():
    progress = {
        "a": ItemProgress(item="a", success_count=2),
        "b": ItemProgress(item="b", success_count=1, ease_factor=3.1, interval=4, next_due_position=7),
    }
    queue = build_queue(["a", "b", "c"], progress)
    assert [e.item for e in queue] == ["b", "c"]
    assert queue[0].ease_factor == 3.1
    assert queue[0].due_position == 7
    assert queue[0].success_count == 1
    assert (queue[1].ease_factor, queue[1].interval, queue[1].due_position) == (2.5, 0, 0)
