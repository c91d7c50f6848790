"""Supplementary questions injected between flashcards."""
import random
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from course_tutor.generation import GenerationRequest, QuestionKind
from course_tutor.mastery import (
    StrugglingItem, get_concept_progress, struggling_items, topic_comprehension, unmastered_topics,
)
from course_tutor.models import (
    Concept, Course, LearningSession, Role, SpecialQuestionRecord, SpecialQuestionType,
)
from course_tutor.turns import TurnContext, commit, generate

HEADERS = {
    SpecialQuestionType.ELABORATION: "Let's understand why...",
    SpecialQuestionType.CONNECTION: "Let's make connections...",
    SpecialQuestionType.HIGH_LEVEL_RECALL: "Let's see the bigger picture...",
}

KINDS = {
    SpecialQuestionType.ELABORATION: QuestionKind.ELABORATION,
    SpecialQuestionType.CONNECTION: QuestionKind.CONNECTION,
    SpecialQuestionType.HIGH_LEVEL_RECALL: QuestionKind.HIGH_LEVEL_RECALL,
}


@dataclass(frozen=True)
class SpecialQuestionPlan:
    type: Optional[SpecialQuestionType]
    current_item: str
    target_item: Optional[str] = None
    connected_item: Optional[str] = None
    skipped_type: Optional[SpecialQuestionType] = None

    @property
    def is_noop(self) -> bool:
        return self.type is None


def choose_question_type(comprehension: int, has_struggling: bool, r: float) -> Optional[SpecialQuestionType]:
    """Map a flashcard score and a uniform draw r in [0, 1) to a question type."""
    if comprehension <= 2:
        if r < 0.4:
            return SpecialQuestionType.ELABORATION
        if r < 0.6:
            return SpecialQuestionType.HIGH_LEVEL_RECALL
    elif comprehension == 5:
        if has_struggling and r < 0.3:
            return SpecialQuestionType.CONNECTION
        if r < 0.5:
            return SpecialQuestionType.HIGH_LEVEL_RECALL
    elif r < 0.2:
        return SpecialQuestionType.HIGH_LEVEL_RECALL
    return None


def resolve_targets(question_type: Optional[SpecialQuestionType], current_item: str,
                    struggling: list[StrugglingItem]) -> SpecialQuestionPlan:
    """Attach target items to a chosen type.

    A connection pairs the current item with the weakest other struggling
    item. When the only struggling item is the current one, the plan becomes
    an explicit no-op that remembers which type was dropped.
    """
    if question_type is SpecialQuestionType.CONNECTION:
        target = next((s.item for s in struggling if s.item != current_item), None)
        if target is None:
            return SpecialQuestionPlan(type=None, current_item=current_item,
                                       skipped_type=SpecialQuestionType.CONNECTION)
        return SpecialQuestionPlan(type=question_type, current_item=current_item,
                                   target_item=target, connected_item=current_item)
    if question_type is SpecialQuestionType.ELABORATION:
        return SpecialQuestionPlan(type=question_type, current_item=current_item, target_item=current_item)
    return SpecialQuestionPlan(type=question_type, current_item=current_item)


def plan_special_question(comprehension: int, current_item: str, struggling: list[StrugglingItem],
                          rng: random.Random) -> SpecialQuestionPlan:
    r = rng.random()
    question_type = choose_question_type(comprehension, bool(struggling), r)
    plan = resolve_targets(question_type, current_item, struggling)
    logger.debug(f"Special question draw r={r:.3f} score={comprehension} -> {plan}")
    return plan


def ask_special_question(ctx: TurnContext, session: LearningSession, course: Course, concept: Concept,
                         plan: SpecialQuestionPlan, last_answer: str = "", last_feedback: str = "",
                         items_covered: Optional[list[str]] = None) -> Optional[SpecialQuestionRecord]:
    """Ask the planned question and record it. Scheduling state is left alone."""
    if plan.is_noop:
        return None
    progress = get_concept_progress(session, concept.name)
    struggling = struggling_items(progress)
    topics = topic_comprehension(progress, concept.topics)
    request = GenerationRequest(
        kind=KINDS[plan.type],
        course=course,
        understanding=session.understanding,
        concept=concept,
        topics=topics,
        item=plan.current_item,
        fields=concept.memorize_fields,
        history=session.history(ctx.history_window),
        extra={
            "last_answer": last_answer,
            "last_feedback": last_feedback,
            "target_item": plan.target_item,
            "items_covered": items_covered or [],
            "weak_topics": unmastered_topics(progress, concept.topics),
            "struggling_items": [s.item for s in struggling],
        },
    )
    question = generate(ctx.generator.generate_question, request)
    ctx.learner.show(HEADERS[plan.type], style="yellow")
    ctx.learner.show(question, style="bold")
    answer = ctx.learner.ask("Your thoughts")
    request.question = question
    evaluation = generate(ctx.generator.evaluate, answer, request)
    ctx.learner.show(evaluation.feedback, style="blue")

    record = SpecialQuestionRecord(
        type=plan.type,
        question=question,
        answer=answer,
        feedback=evaluation.feedback,
        target_item=plan.target_item,
        connected_item=plan.connected_item,
    )
    progress.special_questions.append(record)
    session.add_message(Role.TUTOR, question)
    session.add_message(Role.LEARNER, answer)
    session.add_message(Role.TUTOR, evaluation.feedback)
    commit(ctx, session)
    return record
