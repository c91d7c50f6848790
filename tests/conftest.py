import pytest

from course_tutor.db import init_db
from course_tutor.generation import GeneratedEvaluation
from course_tutor.models import Concept, Course, LearningSession, Phase
from course_tutor.sessions import create_session, save_course
from course_tutor.turns import TurnContext


class ScriptedGenerator:
    """Generator/course provider that replays canned evaluations.

    Evaluations may be ints (comprehension only), GeneratedEvaluation
    instances, or exceptions to raise. When the script runs out every
    answer scores ``default``.
    """

    def __init__(self, evaluations=None, course=None, default=5):
        self.evaluations = list(evaluations or [])
        self.course = course
        self.default = default
        self.question_requests = []
        self.evaluated = []
        self.explained = []
        self.course_calls = 0

    def generate_question(self, request):
        self.question_requests.append(request)
        return f"{request.kind.value} question {len(self.question_requests)}"

    def evaluate(self, answer, request):
        self.evaluated.append((answer, request))
        item = self.evaluations.pop(0) if self.evaluations else self.default
        if isinstance(item, Exception):
            raise item
        if isinstance(item, int):
            return GeneratedEvaluation(comprehension=item, feedback=f"feedback {item}")
        return item

    def explain(self, question, request):
        self.explained.append(question)
        return f"explanation of {question}"

    def generate_course(self, topic, constraints):
        self.course_calls += 1
        if isinstance(self.course, Exception):
            raise self.course
        return self.course

    def close(self):
        pass


class LearnerLeft(Exception):
    """Scripted answer that stands for the learner quitting mid-prompt."""


class ScriptedLearner:
    """Answers from a script; unscripted confirms say yes except to "Do you have..." offers.

    An exception in the answer script is raised from ``ask``.
    """

    def __init__(self, answers=None, confirms=None, default_confirm=True, decline=("Do you have",)):
        self.answers = list(answers or [])
        self.confirms = list(confirms or [])
        self.default_confirm = default_confirm
        self.decline = decline
        self.asked = []
        self.confirm_prompts = []
        self.shown = []

    def ask(self, prompt):
        self.asked.append(prompt)
        answer = self.answers.pop(0) if self.answers else "my answer"
        if isinstance(answer, BaseException):
            raise answer
        return answer

    def confirm(self, prompt, default=True):
        self.confirm_prompts.append(prompt)
        if self.confirms:
            return self.confirms.pop(0)
        if any(prompt.startswith(d) for d in self.decline):
            return False
        return self.default_confirm

    def show(self, text, style="", title=None):
        self.shown.append(text)


class FixedRandom:
    """Stands in for random.Random with a fixed sequence of draws."""

    def __init__(self, *values, default=0.99):
        self.values = list(values)
        self.default = default

    def random(self):
        return self.values.pop(0) if self.values else self.default


def make_course(connections=1, background=True):
    return Course(
        name="Cell Biology",
        concepts=[
            Concept(
                name="Organelles",
                topics=["Structure", "Function"],
                memorize_fields=["Role", "Location"],
                memorize_items=["Mitochondria", "Ribosome"],
            ),
            Concept(
                name="Cell Division",
                topics=["Mitosis"],
                memorize_fields=["Event"],
                memorize_items=["Prophase"],
            ),
        ],
        connection_topics=[f"Link {i}" for i in range(1, connections + 1)],
        background_topics=["What a cell is", "Cell theory"] if background else [],
    )


@pytest.fixture
def tmp_db(tmp_path):
    """Provide a temporary SQLite database path for tests."""
    db_path = str(tmp_path / "test_tutor.db")
    return db_path


@pytest.fixture
def course():
    return make_course()


@pytest.fixture
def stored(tmp_db, course):
    """A saved course plus an active session sitting in the overview phase."""
    init_db(tmp_db)
    course_id = save_course(tmp_db, course)
    session = LearningSession(user_id="ada", course_id=course_id, phase=Phase.OVERVIEW)
    create_session(tmp_db, session)
    return session


@pytest.fixture
def make_ctx(tmp_db):
    def factory(generator=None, learner=None, rng=None, **kwargs):
        ctx = TurnContext(
            db_path=tmp_db,
            generator=generator or ScriptedGenerator(),
            learner=learner or ScriptedLearner(),
            **kwargs,
        )
        if rng is not None:
            ctx.rng = rng
        return ctx
    return factory
