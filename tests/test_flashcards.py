# tests/test_flashcards.py
import pytest
from conftest import FixedRandom, ScriptedGenerator, ScriptedLearner

from course_tutor.errors import GenerationFailure, PersistenceError
from course_tutor.flashcards import apply_review, difficulty_label, flashcard_question, present_card, run_memorization
from course_tutor.mastery import get_concept_progress
from course_tutor.models import Attempt, ConceptProgress, Evaluation, FlashcardScheduleEntry, ItemProgress
from course_tutor.scheduling import build_queue, plan_review, select_next
from course_tutor.sessions import load_session, save_session


def test_flashcard_question_lists_fields():
    assert flashcard_question("Ribosome", ["Role", "Location"]) == \
        "Describe the following fields for Ribosome: Role, Location"


def test_difficulty_label():
    assert difficulty_label(1.5) == "Difficult"
    assert difficulty_label(2.5) == "Medium"
    assert difficulty_label(3.0) == "Medium"
    assert difficulty_label(3.2) == "Easy"


def test_apply_review_is_idempotent():
    progress = ConceptProgress(concept="Organelles")
    queue = [FlashcardScheduleEntry(item="Ribosome")]
    attempt = Attempt(question="q", answer="a", evaluation=Evaluation(comprehension=5, feedback=""))
    update = plan_review(queue[0], 5, progress.global_position, attempt)

    apply_review(progress, queue, update)
    apply_review(progress, queue, update)

    item = progress.items["Ribosome"]
    assert len(item.attempts) == 1
    assert item.success_count == 1
    assert progress.global_position == 1
    assert queue[0].due_position == 16


def test_memorization_round_until_all_mastered(stored, course, make_ctx):
    ctx = make_ctx(generator=ScriptedGenerator(default=5), rng=FixedRandom())
    concept = course.concepts[0]

    presented = run_memorization(ctx, stored, course, concept)

    assert presented == 4
    progress = stored.concepts["Organelles"]
    assert progress.global_position == 4
    assert all(progress.items[i].success_count == 2 for i in concept.memorize_items)
    reloaded = load_session(ctx.db_path, "ada", stored.course_id)
    assert reloaded.concepts["Organelles"].global_position == 4


def test_position_advances_by_one_per_card(stored, course, make_ctx):
    generator = ScriptedGenerator(evaluations=[1, 3, 5, 4, 2, 5, 5, 4, 5, 5])
    ctx = make_ctx(generator=generator, rng=FixedRandom())
    concept = course.concepts[0]
    progress = get_concept_progress(stored, concept.name)
    queue = build_queue(concept.memorize_items, progress.items)

    positions = [progress.global_position]
    while (entry := select_next(queue, progress.global_position)) is not None:
        present_card(ctx, stored, course, concept, progress, queue, entry)
        positions.append(progress.global_position)
    assert positions == list(range(len(positions)))


def test_special_question_between_cards(stored, course, make_ctx):
    generator = ScriptedGenerator(evaluations=[1, 2], default=5)
    learner = ScriptedLearner()
    ctx = make_ctx(generator=generator, learner=learner, rng=FixedRandom(0.1))

    presented = run_memorization(ctx, stored, course, course.concepts[0])

    assert presented == 5
    progress = stored.concepts["Organelles"]
    assert len(progress.special_questions) == 1
    assert progress.special_questions[0].target_item == "Mitochondria"
    assert progress.global_position == 5
    assert "Your thoughts" in learner.asked


def test_resumed_round_skips_mastered_items(stored, course, make_ctx):
    progress = get_concept_progress(stored, "Organelles")
    progress.items["Mitochondria"] = ItemProgress(item="Mitochondria", success_count=2)
    progress.global_position = 7
    ctx = make_ctx(generator=ScriptedGenerator(default=5), rng=FixedRandom())

    presented = run_memorization(ctx, stored, course, course.concepts[0])

    assert presented == 2
    assert progress.global_position == 9
    assert len(progress.items["Mitochondria"].attempts) == 0


def test_generation_failure_leaves_schedule_unchanged(stored, course, make_ctx):
    ctx = make_ctx(generator=ScriptedGenerator(evaluations=[TimeoutError("slow")]))
    concept = course.concepts[0]
    progress = get_concept_progress(stored, concept.name)
    queue = build_queue(concept.memorize_items, progress.items)

    with pytest.raises(GenerationFailure):
        present_card(ctx, stored, course, concept, progress, queue, queue[0])

    assert progress.global_position == 0
    assert progress.items == {}
    assert queue[0].due_position == 0


def test_persistence_retry_does_not_double_count(stored, course, make_ctx, monkeypatch):
    calls = []

    def flaky_save(db_path, session):
        calls.append(1)
        if len(calls) == 1:
            raise PersistenceError("disk busy")
        save_session(db_path, session)

    monkeypatch.setattr("course_tutor.turns.save_session", flaky_save)
    ctx = make_ctx(generator=ScriptedGenerator(evaluations=[5]))
    concept = course.concepts[0]
    progress = get_concept_progress(stored, concept.name)
    queue = build_queue(concept.memorize_items, progress.items)

    present_card(ctx, stored, course, concept, progress, queue, queue[0])

    assert len(calls) == 2
    reloaded = load_session(ctx.db_path, "ada", stored.course_id).concepts["Organelles"]
    assert reloaded.global_position == 1
    assert reloaded.items["Mitochondria"].success_count == 1
    assert len(reloaded.items["Mitochondria"].attempts) == 1


def test_persistence_failure_is_raised_after_retries(stored, course, make_ctx, monkeypatch):
    def broken_save(db_path, session):
        raise PersistenceError("disk gone")

    monkeypatch.setattr("course_tutor.turns.save_session", broken_save)
    ctx = make_ctx(generator=ScriptedGenerator(evaluations=[5]), persist_retries=2)
    concept = course.concepts[0]
    progress = get_concept_progress(stored, concept.name)
    queue = build_queue(concept.memorize_items, progress.items)

    with pytest.raises(PersistenceError):
        present_card(ctx, stored, course, concept, progress, queue, queue[0])
