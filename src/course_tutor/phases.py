"""Session phase state machine.

Initialization -> Overview -> ConceptLearning (each concept followed by its
nested Memorization round) -> DrawingConnections -> Complete.

A session's position is (phase, concept index, concept stage) and only
ever moves forward; every phase function can be re-entered after an
interruption and picks up from the persisted position.
"""
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from loguru import logger

from course_tutor.errors import InvalidTransition, ValidationError
from course_tutor.flashcards import run_memorization
from course_tutor.generation import CourseConstraints, GeneratedEvaluation, GenerationRequest, QuestionKind
from course_tutor.mastery import (
    apply_skip, get_concept_progress, record_topic_attempt, topic_comprehension, unmastered_topics,
)
from course_tutor.models import (
    MAX_COMPREHENSION, OVERVIEW_KEY, SKIP_COMMAND,
    Attempt, Concept, ConceptProgress, ConceptStage, Course, Evaluation, LearningSession, Phase, Role,
)
from course_tutor.sessions import create_session, save_course
from course_tutor.turns import TurnContext, commit, generate


@dataclass(frozen=True)
class TopicLoopResult:
    questions: int
    skipped: int
    declined: bool
    remaining: tuple[str, ...]


def _position(session: LearningSession, course: Course) -> tuple[int, int, int]:
    index = course.concept_index(session.current_concept) if session.current_concept else -1
    return (session.phase.order, index, session.concept_stage.order)


def advance(session: LearningSession, course: Course, phase: Phase, concept: Optional[str] = None,
            stage: ConceptStage = ConceptStage.PENDING) -> None:
    """Move the session forward. Moving backwards raises InvalidTransition."""
    if phase is not Phase.CONCEPT_LEARNING:
        concept, stage = None, ConceptStage.PENDING
    elif concept is None:
        raise InvalidTransition("Concept learning needs a concept")
    index = course.concept_index(concept) if concept else -1
    target = (phase.order, index, stage.order)
    current = _position(session, course)
    if target < current:
        raise InvalidTransition(
            f"Cannot move from {session.phase.value}/{session.current_concept}/{session.concept_stage.value} "
            f"back to {phase.value}/{concept}/{stage.value}"
        )
    if target == current:
        return
    session.phase = phase
    session.current_concept = concept
    session.concept_stage = stage
    session.last_activity_at = datetime.now()
    logger.info(f"Session {session.course_id}: {phase.value} {concept or ''} {stage.value}".rstrip())


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------


def start_session(ctx: TurnContext, user_id: str, course: Course, course_id: str,
                  constraints: CourseConstraints) -> LearningSession:
    """Create the session for a stored course and move it to the overview."""
    session = LearningSession(
        user_id=user_id,
        course_id=course_id,
        understanding=constraints.understanding,
        time_budget=constraints.time_budget,
    )
    create_session(ctx.db_path, session)
    advance(session, course, Phase.OVERVIEW)
    commit(ctx, session)
    return session


def initialize_course(ctx: TurnContext, user_id: str, topic: str, constraints: CourseConstraints,
                      document_id: Optional[int] = None) -> tuple[LearningSession, Course]:
    if not topic or not topic.strip():
        raise ValidationError("A topic is required to create a course")
    if ctx.course_provider is None:
        raise ValidationError("No course provider configured")
    course = generate(ctx.course_provider.generate_course, topic, constraints)
    course_id = save_course(ctx.db_path, course, topic=topic, document_id=document_id)
    session = start_session(ctx, user_id, course, course_id, constraints)
    ctx.learner.show(f'Course "{course.name}" has been created!', style="green")
    ctx.learner.show(f"Found {len(course.concepts)} concepts to learn:", style="dim")
    for concept in course.concepts:
        ctx.learner.show(f"  - {concept.name}", style="dim")
    return session, course


# ---------------------------------------------------------------------------
# Overview / concept learning topic loop
# ---------------------------------------------------------------------------


def _show_topic_progress(ctx: TurnContext, progress: ConceptProgress, topics: list[str]) -> None:
    for topic, level in topic_comprehension(progress, topics).items():
        bar = "█" * level + "░" * (MAX_COMPREHENSION - level)
        mark = " ✓" if level >= MAX_COMPREHENSION else ""
        ctx.learner.show(f"  {bar} {level}/{MAX_COMPREHENSION} {topic}{mark}", style="cyan")


def _topic_scores(topics: list[str], remaining: list[str],
                  evaluation: GeneratedEvaluation) -> list[tuple[str, int]]:
    """Work out which topics an evaluation speaks to."""
    scores = []
    for s in evaluation.topic_scores:
        if s.topic in topics:
            scores.append((s.topic, s.score))
        else:
            logger.warning(f"Ignoring score for unknown topic '{s.topic}'")
    if not scores:
        if evaluation.target_topic in topics:
            target = evaluation.target_topic
        elif remaining:
            target = remaining[0]
        else:
            return []
        scores = [(target, evaluation.comprehension)]
    for topic, score in scores:
        if not isinstance(score, int) or not 0 <= score <= MAX_COMPREHENSION:
            raise ValidationError(f"Comprehension for '{topic}' must be 0-5, got {score!r}")
    return scores


def run_topic_loop(ctx: TurnContext, session: LearningSession, course: Course, key: str,
                   topics: list[str], kind: QuestionKind, concept: Optional[Concept] = None) -> TopicLoopResult:
    """Question the learner until every topic is mastered, the cap is hit, or they stop.

    Answered questions are counted on the stored progress for ``key``, so a
    resumed loop keeps counting toward the same cap.
    """
    progress = get_concept_progress(session, key)
    remaining = unmastered_topics(progress, topics)
    questions = progress.questions_asked
    skipped = 0
    declined = False

    while remaining and questions < ctx.max_topic_questions:
        request = GenerationRequest(
            kind=kind,
            course=course,
            understanding=session.understanding,
            concept=concept,
            topics=topic_comprehension(progress, topics),
            history=session.history(ctx.history_window),
            extra={"first": questions == 0 and skipped == 0, "unmastered": remaining},
        )
        question = generate(ctx.generator.generate_question, request)
        ctx.learner.show(question, style="cyan")
        answer = ctx.learner.ask("Your answer (or /skip to skip)")

        if answer.strip().lower() == SKIP_COMMAND:
            topic = apply_skip(progress, topics, question)
            session.add_message(Role.TUTOR, question)
            session.add_message(Role.LEARNER, SKIP_COMMAND)
            session.add_message(Role.TUTOR, "Topic marked as understood (skipped).")
            commit(ctx, session)
            skipped += 1
            ctx.learner.show(f'Skipping "{topic}"...', style="yellow")
            remaining = unmastered_topics(progress, topics)
            continue

        request.question = question
        evaluation = generate(ctx.generator.evaluate, answer, request)
        scores = _topic_scores(topics, remaining, evaluation)
        for topic, score in scores:
            record_topic_attempt(progress, topic, Attempt(
                question=question,
                answer=answer,
                evaluation=Evaluation(comprehension=score, feedback=evaluation.feedback, target_topic=topic),
            ))
        session.add_message(Role.TUTOR, question)
        session.add_message(Role.LEARNER, answer)
        session.add_message(Role.TUTOR, evaluation.feedback)
        progress.questions_asked = questions + 1
        commit(ctx, session)
        questions = progress.questions_asked

        ctx.learner.show(evaluation.feedback, style="green")
        for topic, score in scores:
            ctx.learner.show(f'Comprehension for "{topic}": {score}/5', style="cyan")
        remaining = unmastered_topics(progress, topics)

        if remaining and questions % ctx.confirm_every == 0 and questions < ctx.max_topic_questions:
            _show_topic_progress(ctx, progress, topics)
            if not ctx.learner.confirm("Would you like to continue with more questions?"):
                declined = True
                break

    logger.info(f"Topic loop {key}: {questions} questions, {skipped} skips, {len(remaining)} unmastered")
    return TopicLoopResult(questions, skipped, declined, tuple(remaining))


def handle_learner_questions(ctx: TurnContext, session: LearningSession, course: Course) -> int:
    """Free-form Q&A; answers do not change mastery."""
    asked = 0
    while True:
        question = ctx.learner.ask("What would you like to know?")
        request = GenerationRequest(
            kind=QuestionKind.OVERVIEW,
            course=course,
            understanding=session.understanding,
            topics=topic_comprehension(session.concepts.get(OVERVIEW_KEY), course.overview_topics),
            history=session.history(ctx.history_window),
        )
        answer = generate(ctx.generator.explain, question, request)
        session.add_message(Role.LEARNER, question)
        session.add_message(Role.TUTOR, answer)
        commit(ctx, session)
        ctx.learner.show(answer, style="green")
        asked += 1
        if not ctx.learner.confirm("Do you have more questions?", default=False):
            return asked


def run_overview(ctx: TurnContext, session: LearningSession, course: Course) -> bool:
    """Returns False when the learner chooses to stop before concept learning."""
    topics = course.overview_topics
    ctx.learner.show("Let's start with a high-level overview", style="bold blue")
    ctx.learner.show("Type /skip at any time if you're already familiar with a topic.", style="dim")
    result = run_topic_loop(ctx, session, course, OVERVIEW_KEY, topics, QuestionKind.OVERVIEW)
    if not result.remaining:
        ctx.learner.show("Great! You have a solid foundation for the course!", style="yellow")
    elif result.questions >= ctx.max_topic_questions:
        ctx.learner.show("Let's move forward - you have enough foundation to continue.", style="dim")
    _show_topic_progress(ctx, get_concept_progress(session, OVERVIEW_KEY), topics)

    if ctx.learner.confirm("Do you have any questions before we dive into specific topics?", default=False):
        handle_learner_questions(ctx, session, course)
    if not ctx.learner.confirm("Ready to dive into more focused topics?"):
        ctx.learner.show("Take your time! Resume when you're ready.", style="dim")
        return False
    advance(session, course, Phase.CONCEPT_LEARNING, course.concepts[0].name)
    commit(ctx, session)
    return True


def run_concept_learning(ctx: TurnContext, session: LearningSession, course: Course,
                         concept: Concept) -> TopicLoopResult:
    ctx.learner.show(f"Learning: {concept.name}", style="bold yellow")
    ctx.learner.show("Topics we'll cover:", style="dim")
    for topic in concept.topics:
        ctx.learner.show(f"  - {topic}", style="dim")
    return run_topic_loop(ctx, session, course, concept.name, concept.topics, QuestionKind.CONCEPT, concept)


def run_concepts(ctx: TurnContext, session: LearningSession, course: Course) -> bool:
    """Work through the remaining concepts. Returns False if the learner takes a break."""
    start = course.concept_index(session.current_concept) if session.current_concept else 0
    for index in range(start, len(course.concepts)):
        concept = course.concepts[index]
        stage = session.concept_stage if session.current_concept == concept.name else ConceptStage.PENDING
        if stage is ConceptStage.DONE:
            continue

        if stage is ConceptStage.PENDING:
            if not ctx.learner.confirm(f'Ready to learn about "{concept.name}"?'):
                ctx.learner.show("Skipping this concept for now...", style="dim")
                advance(session, course, Phase.CONCEPT_LEARNING, concept.name, ConceptStage.DONE)
                session.skipped_concepts.append(concept.name)
                commit(ctx, session)
                continue
            advance(session, course, Phase.CONCEPT_LEARNING, concept.name, ConceptStage.LEARNING)
            commit(ctx, session)
            stage = ConceptStage.LEARNING

        if stage is ConceptStage.LEARNING:
            run_concept_learning(ctx, session, course, concept)
            advance(session, course, Phase.CONCEPT_LEARNING, concept.name, ConceptStage.MEMORIZATION)
            commit(ctx, session)
            ctx.learner.show("Now let's practice with flashcards to solidify your knowledge.", style="dim")

        run_memorization(ctx, session, course, concept)
        advance(session, course, Phase.CONCEPT_LEARNING, concept.name, ConceptStage.DONE)
        commit(ctx, session)

        is_last = index == len(course.concepts) - 1
        if not is_last and not ctx.learner.confirm("Ready to move to the next concept?"):
            ctx.learner.show("Take a break! You can resume later.", style="dim")
            return False

    advance(session, course, Phase.DRAWING_CONNECTIONS)
    commit(ctx, session)
    return True


# ---------------------------------------------------------------------------
# Drawing connections
# ---------------------------------------------------------------------------


def connection_question_limit(ctx: TurnContext, course: Course) -> int:
    return min(ctx.max_connection_questions, len(course.connection_topics) * 2)


def run_drawing_connections(ctx: TurnContext, session: LearningSession, course: Course) -> int:
    """Scenario questions tying concepts together.

    Returns the main questions asked over the whole session, including any
    asked before an interruption.
    """
    ctx.learner.show("Final Phase: Drawing Connections", style="bold blue")
    limit = connection_question_limit(ctx, course)
    asked: list[str] = []
    count = session.connection_questions
    while count < limit:
        request = GenerationRequest(
            kind=QuestionKind.SYNTHESIS,
            course=course,
            understanding=session.understanding,
            history=session.history(ctx.history_window),
            extra={"previous_questions": list(asked)},
        )
        question = generate(ctx.generator.generate_question, request)
        ctx.learner.show(question, style="magenta")
        answer = ctx.learner.ask("Your response")
        request.question = question
        evaluation = generate(ctx.generator.evaluate, answer, request)
        session.add_message(Role.TUTOR, question)
        session.add_message(Role.LEARNER, answer)
        session.add_message(Role.TUTOR, evaluation.feedback)
        session.connection_questions = count + 1
        commit(ctx, session)
        count = session.connection_questions
        ctx.learner.show(evaluation.feedback, style="green")
        asked.append(question)

        if evaluation.follow_up:
            ctx.learner.show("Follow-up challenge:", style="cyan")
            ctx.learner.show(evaluation.follow_up, style="cyan")
            follow_answer = ctx.learner.ask("Your response")
            follow_eval = generate(ctx.generator.evaluate, follow_answer,
                                   replace(request, question=evaluation.follow_up))
            session.add_message(Role.TUTOR, evaluation.follow_up)
            session.add_message(Role.LEARNER, follow_answer)
            session.add_message(Role.TUTOR, follow_eval.feedback)
            commit(ctx, session)
            ctx.learner.show(follow_eval.feedback, style="green")
            asked.append(evaluation.follow_up)

        if count % ctx.confirm_every == 0 and count < limit:
            if not ctx.learner.confirm("Would you like to continue with more synthesis questions?"):
                break

    advance(session, course, Phase.COMPLETE)
    commit(ctx, session)
    _show_summary(ctx, session, course, count)
    return count


def _show_summary(ctx: TurnContext, session: LearningSession, course: Course, connections: int) -> None:
    elapsed = datetime.now() - session.started_at
    hours, rest = divmod(int(elapsed.total_seconds()), 3600)
    minutes = rest // 60
    items = sum(len(c.memorize_items) for c in course.concepts)
    studied = len(course.concepts) - len(session.skipped_concepts)
    ctx.learner.show("Congratulations! You've completed the course!", style="bold green")
    ctx.learner.show(
        f"  Course: {course.name}\n"
        f"  Concepts studied: {studied}/{len(course.concepts)}\n"
        f"  Total items memorized: {items}\n"
        f"  Connections explored: {connections}\n"
        f"  Total time: {hours}h {minutes}m",
        style="dim",
    )


def run_session(ctx: TurnContext, session: LearningSession, course: Course) -> LearningSession:
    """Drive a session from wherever it stands to completion or a learner pause."""
    if session.phase is Phase.INITIALIZATION:
        advance(session, course, Phase.OVERVIEW)
        commit(ctx, session)
    if session.phase is Phase.OVERVIEW and not run_overview(ctx, session, course):
        return session
    if session.phase is Phase.CONCEPT_LEARNING and not run_concepts(ctx, session, course):
        return session
    if session.phase is Phase.DRAWING_CONNECTIONS:
        run_drawing_connections(ctx, session, course)
    return session
