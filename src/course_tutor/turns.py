"""Turn plumbing shared by every phase.

A turn is: ask the generator, ask the learner, ask the generator to
evaluate, apply the result to the session, persist. Collaborator failures
surface before anything is applied; persistence failures are retried with
the already-applied state so nothing is counted twice.
"""
import random
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol, TypeVar

from loguru import logger

from course_tutor.errors import GenerationFailure, PersistenceError, TutorError
from course_tutor.generation import CourseProvider, Generator
from course_tutor.models import LearningSession
from course_tutor.sessions import save_session

T = TypeVar("T")


class Learner(Protocol):
    """The person on the other side of the session."""

    def ask(self, prompt: str) -> str:
        ...

    def confirm(self, prompt: str, default: bool = True) -> bool:
        ...

    def show(self, text: str, style: str = "", title: Optional[str] = None) -> None:
        ...


@dataclass
class TurnContext:
    db_path: str
    generator: Generator
    learner: Learner
    course_provider: Optional[CourseProvider] = None
    rng: random.Random = field(default_factory=random.Random)
    persist_retries: int = 3
    max_topic_questions: int = 15
    confirm_every: int = 3
    max_connection_questions: int = 10
    history_window: int = 10


def generate(call: Callable[..., T], *args, **kwargs) -> T:
    """Run a collaborator call, turning any failure into GenerationFailure."""
    try:
        return call(*args, **kwargs)
    except TutorError:
        raise
    except Exception as e:
        logger.error(f"Generation call {getattr(call, '__name__', call)} failed: {e}")
        raise GenerationFailure(str(e)) from e


def commit(ctx: TurnContext, session: LearningSession) -> None:
    """Persist the session, retrying the same state on storage errors."""
    attempts = max(1, ctx.persist_retries)
    for attempt in range(1, attempts + 1):
        try:
            save_session(ctx.db_path, session)
            return
        except PersistenceError as e:
            if attempt == attempts:
                logger.error(f"Giving up saving session {session.course_id} after {attempt} attempts")
                raise
            logger.warning(f"Save attempt {attempt}/{attempts} failed: {e}")
