"""Flashcard memorization round with position-based scheduling."""
from loguru import logger

from course_tutor.generation import GenerationRequest, QuestionKind
from course_tutor.mastery import get_concept_progress, struggling_items
from course_tutor.models import (
    INITIAL_EASE, Attempt, Concept, ConceptProgress, Course, Evaluation,
    FlashcardScheduleEntry, ItemProgress, LearningSession, Role,
)
from course_tutor.scheduling import ReviewUpdate, build_queue, plan_review, select_next
from course_tutor.special_questions import ask_special_question, plan_special_question
from course_tutor.turns import TurnContext, commit, generate


def flashcard_question(item: str, fields: list[str]) -> str:
    return f"Describe the following fields for {item}: {', '.join(fields)}"


def difficulty_label(ease: float) -> str:
    if ease < 2.0:
        return "Difficult"
    if ease > 3.0:
        return "Easy"
    return "Medium"


def apply_review(progress: ConceptProgress, queue: list[FlashcardScheduleEntry],
                 update: ReviewUpdate) -> ItemProgress:
    """Write a review into the concept's progress and the round's queue.

    Safe to call again with the same update: values are absolute and the
    attempt is only appended once.
    """
    item = progress.items.setdefault(update.item, ItemProgress(item=update.item))
    if not any(a is update.attempt for a in item.attempts):
        item.attempts.append(update.attempt)
    item.success_count = update.success_count
    item.ease_factor = update.ease_factor
    item.interval = update.interval
    item.last_review_position = update.position
    item.next_due_position = update.due_position
    progress.global_position = max(progress.global_position, update.position)

    for entry in list(queue):
        if entry.item != update.item:
            continue
        entry.ease_factor = update.ease_factor
        entry.interval = update.interval
        entry.due_position = update.due_position
        entry.success_count = update.success_count
        if update.mastered:
            queue.remove(entry)
    return item


def _previous_attempts(progress: ConceptProgress, item: str) -> list[dict]:
    existing = progress.items.get(item)
    if existing is None:
        return []
    return [{"answer": a.answer, "feedback": a.evaluation.feedback} for a in existing.attempts]


def present_card(ctx: TurnContext, session: LearningSession, course: Course, concept: Concept,
                 progress: ConceptProgress, queue: list[FlashcardScheduleEntry],
                 entry: FlashcardScheduleEntry) -> ReviewUpdate:
    """Show one card, evaluate the answer and persist the result."""
    question = flashcard_question(entry.item, concept.memorize_fields)
    ctx.learner.show(question, style="cyan", title=entry.item)
    if entry.ease_factor != INITIAL_EASE:
        ctx.learner.show(
            f"[{difficulty_label(entry.ease_factor)} card - Ease: {entry.ease_factor:.1f}]", style="dim"
        )
    answer = ctx.learner.ask("Your answer")
    request = GenerationRequest(
        kind=QuestionKind.FLASHCARD,
        course=course,
        understanding=session.understanding,
        concept=concept,
        item=entry.item,
        fields=concept.memorize_fields,
        question=question,
        history=session.history(ctx.history_window),
        extra={
            "previous_attempts": _previous_attempts(progress, entry.item),
            "other_concepts": [c.name for c in course.concepts if c.name != concept.name],
        },
    )
    evaluation = generate(ctx.generator.evaluate, answer, request)
    attempt = Attempt(
        question=question,
        answer=answer,
        evaluation=Evaluation(comprehension=evaluation.comprehension, feedback=evaluation.feedback),
    )
    update = plan_review(entry, evaluation.comprehension, progress.global_position, attempt)

    apply_review(progress, queue, update)
    session.add_message(Role.LEARNER, answer)
    session.add_message(Role.TUTOR, evaluation.feedback)
    commit(ctx, session)
    logger.debug(
        f"{concept.name}/{update.item}: score={evaluation.comprehension} ease={update.ease_factor:.3f} "
        f"interval={update.interval} due={update.due_position} success={update.success_count}"
    )

    if evaluation.comprehension >= 4:
        ctx.learner.show(evaluation.feedback, style="green")
        if update.mastered:
            ctx.learner.show(f'"{update.item}" mastered!', style="bold green")
        else:
            ctx.learner.show(f'Good! One more correct answer needed for "{update.item}".', style="yellow")
    else:
        ctx.learner.show(evaluation.feedback, style="yellow")
        if evaluation.comprehension <= 1:
            ctx.learner.show("This card needs immediate review.", style="red")
    if not update.mastered and evaluation.comprehension > 1:
        plural = "s" if update.interval > 1 else ""
        ctx.learner.show(f"Will review after {update.interval} more card{plural}.", style="dim")
    return update


def run_memorization(ctx: TurnContext, session: LearningSession, course: Course, concept: Concept) -> int:
    """Drill a concept's items until each has two consecutive passing answers.

    Returns the number of cards presented in this round.
    """
    progress = get_concept_progress(session, concept.name)
    queue = build_queue(concept.memorize_items, progress.items)
    if not queue:
        ctx.learner.show(f'All items in "{concept.name}" have already been mastered!', style="green")
        return 0

    ctx.learner.show(f"Flashcard Practice: {concept.name}", style="bold blue")
    ctx.learner.show("Harder cards come back sooner. Answer each item correctly twice to master it.",
                     style="dim")
    logger.info(f"Memorization round for {concept.name}: {len(queue)} items queued")

    items_covered: list[str] = []
    presented = 0
    while True:
        entry = select_next(queue, progress.global_position)
        if entry is None:
            break
        update = present_card(ctx, session, course, concept, progress, queue, entry)
        presented += 1
        if update.item not in items_covered:
            items_covered.append(update.item)

        score = update.attempt.evaluation.comprehension
        plan = plan_special_question(score, update.item, struggling_items(progress), ctx.rng)
        remaining = sum(1 for e in queue if e.active)
        if remaining and not plan.is_noop:
            ask_special_question(
                ctx, session, course, concept, plan,
                last_answer=update.attempt.answer,
                last_feedback=update.attempt.evaluation.feedback,
                items_covered=items_covered,
            )
        if remaining:
            ctx.learner.show(f"{remaining} items remaining to master...", style="dim")

    ctx.learner.show(f'Excellent! You\'ve mastered all items in "{concept.name}"!', style="bold green")
    return presented
