"""Question generation and answer evaluation collaborators.

The tutor only depends on the two protocols below. ``LLMGenerator`` is the
production implementation; it talks to any OpenAI-compatible
chat-completions endpoint and validates every JSON reply before handing it
back, so malformed or slow responses surface as GenerationFailure.
"""
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol

import httpx
from loguru import logger
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from course_tutor import prompts
from course_tutor.errors import GenerationFailure, ValidationError
from course_tutor.models import (
    Concept, ConversationEntry, Course, TimeBudget, UnderstandingLevel,
)


class QuestionKind(str, Enum):
    OVERVIEW = "overview"
    CONCEPT = "concept"
    FLASHCARD = "flashcard"
    ELABORATION = "elaboration"
    CONNECTION = "connection"
    HIGH_LEVEL_RECALL = "high-level-recall"
    SYNTHESIS = "synthesis"


@dataclass
class GenerationRequest:
    kind: QuestionKind
    course: Course
    understanding: UnderstandingLevel = UnderstandingLevel.INTERMEDIATE
    concept: Optional[Concept] = None
    topics: dict[str, int] = field(default_factory=dict)
    item: Optional[str] = None
    fields: list[str] = field(default_factory=list)
    question: str = ""
    history: list[ConversationEntry] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TopicScore:
    topic: str
    score: int


@dataclass(frozen=True)
class GeneratedEvaluation:
    comprehension: int
    feedback: str
    topic_scores: tuple[TopicScore, ...] = ()
    target_topic: Optional[str] = None
    follow_up: Optional[str] = None


@dataclass(frozen=True)
class CourseConstraints:
    time_budget: TimeBudget = TimeBudget.STANDARD
    understanding: UnderstandingLevel = UnderstandingLevel.INTERMEDIATE
    focus: str = ""
    document: Optional[str] = None


class Generator(Protocol):
    def generate_question(self, request: GenerationRequest) -> str:
        ...

    def evaluate(self, answer: str, request: GenerationRequest) -> GeneratedEvaluation:
        ...

    def explain(self, question: str, request: GenerationRequest) -> str:
        ...


class CourseProvider(Protocol):
    def generate_course(self, topic: str, constraints: CourseConstraints) -> Course:
        ...


# ---------------------------------------------------------------------------
# Wire schemas
# ---------------------------------------------------------------------------


class TopicScorePayload(BaseModel):
    topic: str
    score: int = Field(ge=0, le=5)


class EvaluationPayload(BaseModel):
    comprehension: int = Field(ge=0, le=5)
    feedback: str
    target_topic: Optional[str] = None
    topic_scores: list[TopicScorePayload] = Field(default_factory=list)
    follow_up: Optional[str] = None


class ConceptPayload(BaseModel):
    name: str = Field(min_length=1)
    topics: list[str] = Field(min_length=1)
    memorize_fields: list[str] = Field(default_factory=list)
    memorize_items: list[str] = Field(default_factory=list)


class CoursePayload(BaseModel):
    name: str = Field(min_length=1)
    background_topics: list[str] = Field(default_factory=list)
    concepts: list[ConceptPayload] = Field(min_length=1)
    connection_topics: list[str] = Field(default_factory=list)


def _format_topics(topics: dict[str, int]) -> str:
    return "\n".join(f"- {t}: {c}/5" for t, c in topics.items()) or "- (none)"


def _format_history(history: list[ConversationEntry]) -> str:
    return "\n".join(f"{e.role.value}: {e.text}" for e in history)


class LLMGenerator:
    """Generator and course provider backed by a chat-completions API."""

    def __init__(self, base_url: str, api_key: str, model: str, timeout: float = 60.0,
                 client: Optional[httpx.Client] = None):
        self.model = model
        self._client = client or httpx.Client(
            base_url=base_url,
            headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
            timeout=timeout,
        )

    def close(self) -> None:
        self._client.close()

    def _chat(self, system: str, user: str, json_mode: bool = False) -> str:
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}
        try:
            response = self._client.post("/chat/completions", json=body)
            response.raise_for_status()
            return response.json()["choices"][0]["message"]["content"].strip()
        except httpx.TimeoutException as e:
            logger.warning(f"Generation request timed out: {e}")
            raise GenerationFailure("Generation request timed out") from e
        except httpx.HTTPStatusError as e:
            raise GenerationFailure(f"Generation service returned {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise GenerationFailure(f"Could not reach generation service: {e}") from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise GenerationFailure(f"Unexpected generation response: {e}") from e

    def _chat_json(self, system: str, user: str, schema: type[BaseModel]) -> BaseModel:
        text = self._chat(system, user, json_mode=True)
        try:
            return schema.model_validate(json.loads(text))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            logger.warning(f"Rejected {schema.__name__} reply: {e}")
            raise GenerationFailure(f"Invalid {schema.__name__} from generation service") from e

    def _system(self, request: GenerationRequest) -> str:
        level = request.understanding
        history = _format_history(request.history)
        system = prompts.SYSTEM_TUTOR.format(level=level.label) + "\n" + prompts.DEPTH_GUIDANCE[level]
        if history:
            system += "\n\nRecent conversation:\n" + history
        return system

    def _question_prompt(self, request: GenerationRequest) -> str:
        extra = request.extra
        concept = request.concept
        return prompts.QUESTION[request.kind.value].format(
            course=request.course.name,
            concept=concept.name if concept else "",
            topics=_format_topics(request.topics),
            intro=" Start with a one-paragraph introduction." if extra.get("first") else "",
            item=request.item or "",
            fields=", ".join(request.fields),
            answer=extra.get("last_answer", ""),
            feedback=extra.get("last_feedback", ""),
            target=extra.get("target_item", ""),
            items=", ".join(extra.get("items_covered", [])),
            weak_topics=", ".join(extra.get("weak_topics", [])) or "none",
            struggling=", ".join(extra.get("struggling_items", [])) or "none",
            connections=", ".join(request.course.connection_topics),
            previous="\n".join(f"- {q}" for q in extra.get("previous_questions", [])) or "- (none)",
        )

    def generate_question(self, request: GenerationRequest) -> str:
        return self._chat(self._system(request), self._question_prompt(request))

    def evaluate(self, answer: str, request: GenerationRequest) -> GeneratedEvaluation:
        user = prompts.EVALUATE.format(
            question=request.question,
            answer=answer,
            context=self._question_prompt(request),
            topic_names=", ".join(request.topics) or "none",
        )
        payload = self._chat_json(self._system(request), user, EvaluationPayload)
        return GeneratedEvaluation(
            comprehension=payload.comprehension,
            feedback=payload.feedback,
            topic_scores=tuple(TopicScore(s.topic, s.score) for s in payload.topic_scores),
            target_topic=payload.target_topic,
            follow_up=payload.follow_up or None,
        )

    def explain(self, question: str, request: GenerationRequest) -> str:
        user = prompts.EXPLAIN.format(course=request.course.name, question=question)
        return self._chat(self._system(request), user)

    def generate_course(self, topic: str, constraints: CourseConstraints) -> Course:
        document = ""
        if constraints.document:
            document = "Base the course on this source material:\n" + constraints.document
        user = prompts.COURSE.format(
            topic=topic,
            time_budget=constraints.time_budget.label,
            level=constraints.understanding.label,
            focus=constraints.focus or "the essentials",
            document=document,
        )
        payload = self._chat_json("You design concise, well-scoped courses.", user, CoursePayload)
        try:
            course = Course.from_dict(payload.model_dump())
        except ValidationError as e:
            raise GenerationFailure(f"Generated course is unusable: {e}") from e
        logger.info(f"Generated course '{course.name}' with {len(course.concepts)} concepts")
        return course
