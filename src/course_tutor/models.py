"""Data classes for the course and learning session model."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from course_tutor.errors import ValidationError

INITIAL_EASE = 2.5
MIN_EASE = 1.3
MAX_EASE = 4.0
MASTERY_SUCCESSES = 2
MAX_COMPREHENSION = 5
SKIP_COMMAND = "/skip"
OVERVIEW_KEY = "__overview__"


class Phase(str, Enum):
    INITIALIZATION = "initialization"
    OVERVIEW = "overview"
    CONCEPT_LEARNING = "concept-learning"
    DRAWING_CONNECTIONS = "drawing-connections"
    COMPLETE = "complete"

    @property
    def order(self) -> int:
        return list(Phase).index(self)


class ConceptStage(str, Enum):
    """Where a concept stands inside CONCEPT_LEARNING."""
    PENDING = "pending"
    LEARNING = "learning"
    MEMORIZATION = "memorization"
    DONE = "done"

    @property
    def order(self) -> int:
        return list(ConceptStage).index(self)


class UnderstandingLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"

    @property
    def label(self) -> str:
        return {
            UnderstandingLevel.BEGINNER: "None - Complete beginner",
            UnderstandingLevel.INTERMEDIATE: "Some - I know the basics",
            UnderstandingLevel.ADVANCED: "Strong - I want advanced insights",
        }[self]


class TimeBudget(str, Enum):
    MICRO = "<15min"
    QUICK = "15-60min"
    STANDARD = "1-6hours"
    DEEP = "6-12hours"
    COMPREHENSIVE = "12hours+"

    @property
    def label(self) -> str:
        return {
            TimeBudget.MICRO: "Micro-learning - Under 15 minutes",
            TimeBudget.QUICK: "Quick session - 15-60 minutes",
            TimeBudget.STANDARD: "Standard learning - 1-6 hours",
            TimeBudget.DEEP: "Deep dive - 6-12 hours",
            TimeBudget.COMPREHENSIVE: "Comprehensive mastery - 12+ hours",
        }[self]

    @property
    def is_short(self) -> bool:
        return self in (TimeBudget.MICRO, TimeBudget.QUICK)


class Role(str, Enum):
    LEARNER = "learner"
    TUTOR = "tutor"


class SpecialQuestionType(str, Enum):
    ELABORATION = "elaboration"
    CONNECTION = "connection"
    HIGH_LEVEL_RECALL = "high-level-recall"


def _require(data: dict, key: str, model: str):
    if not isinstance(data, dict) or key not in data or data[key] is None:
        raise ValidationError(f"{model}: missing required field '{key}'")
    return data[key]


def _enum(enum_cls, value, model: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"{model}: invalid {enum_cls.__name__} '{value}'") from None


def _ts(value: Optional[str]) -> datetime:
    return datetime.fromisoformat(value) if value else datetime.now()


# ---------------------------------------------------------------------------
# Course structure
# ---------------------------------------------------------------------------


@dataclass
class Concept:
    name: str
    topics: list[str] = field(default_factory=list)
    memorize_fields: list[str] = field(default_factory=list)
    memorize_items: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "topics": list(self.topics),
            "memorize_fields": list(self.memorize_fields),
            "memorize_items": list(self.memorize_items),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Concept":
        return cls(
            name=_require(data, "name", "Concept"),
            topics=list(_require(data, "topics", "Concept")),
            memorize_fields=list(data.get("memorize_fields") or []),
            memorize_items=list(data.get("memorize_items") or []),
        )


@dataclass
class Course:
    name: str
    concepts: list[Concept]
    connection_topics: list[str] = field(default_factory=list)
    background_topics: list[str] = field(default_factory=list)

    @property
    def overview_topics(self) -> list[str]:
        """Background topics, or the concept names when none were authored."""
        if self.background_topics:
            return list(self.background_topics)
        return [c.name for c in self.concepts]

    def concept(self, name: str) -> Concept:
        for c in self.concepts:
            if c.name == name:
                return c
        raise ValidationError(f"Course '{self.name}' has no concept '{name}'")

    def concept_index(self, name: str) -> int:
        return self.concepts.index(self.concept(name))

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "concepts": [c.to_dict() for c in self.concepts],
            "connection_topics": list(self.connection_topics),
            "background_topics": list(self.background_topics),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Course":
        concepts = [Concept.from_dict(c) for c in _require(data, "concepts", "Course")]
        if not concepts:
            raise ValidationError("Course: at least one concept is required")
        names = [c.name for c in concepts]
        if len(set(names)) != len(names):
            raise ValidationError("Course: concept names must be unique")
        return cls(
            name=_require(data, "name", "Course"),
            concepts=concepts,
            connection_topics=list(data.get("connection_topics") or []),
            background_topics=list(data.get("background_topics") or []),
        )


# ---------------------------------------------------------------------------
# Progress tracking
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Evaluation:
    comprehension: int
    feedback: str
    target_topic: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "comprehension": self.comprehension,
            "feedback": self.feedback,
            "target_topic": self.target_topic,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Evaluation":
        return cls(
            comprehension=int(_require(data, "comprehension", "Evaluation")),
            feedback=data.get("feedback", ""),
            target_topic=data.get("target_topic"),
        )


@dataclass(frozen=True)
class Attempt:
    question: str
    answer: str
    evaluation: Evaluation
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "question": self.question,
            "answer": self.answer,
            "evaluation": self.evaluation.to_dict(),
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Attempt":
        return cls(
            question=data.get("question", ""),
            answer=_require(data, "answer", "Attempt"),
            evaluation=Evaluation.from_dict(_require(data, "evaluation", "Attempt")),
            timestamp=_ts(data.get("timestamp")),
        )


@dataclass
class ItemProgress:
    item: str
    attempts: list[Attempt] = field(default_factory=list)
    success_count: int = 0
    ease_factor: float = INITIAL_EASE
    interval: int = 0
    last_review_position: int = 0
    next_due_position: int = 0

    def to_dict(self) -> dict:
        return {
            "item": self.item,
            "attempts": [a.to_dict() for a in self.attempts],
            "success_count": self.success_count,
            "ease_factor": self.ease_factor,
            "interval": self.interval,
            "last_review_position": self.last_review_position,
            "next_due_position": self.next_due_position,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ItemProgress":
        item = _require(data, "item", "ItemProgress")
        success_count = data.get("success_count", 0)
        if success_count not in range(MASTERY_SUCCESSES + 1):
            raise ValidationError(f"ItemProgress '{item}': success_count {success_count!r} out of range")
        ease_factor = data.get("ease_factor", INITIAL_EASE)
        if not isinstance(ease_factor, (int, float)) or not MIN_EASE <= ease_factor <= MAX_EASE:
            raise ValidationError(f"ItemProgress '{item}': ease_factor {ease_factor!r} out of range")
        return cls(
            item=item,
            attempts=[Attempt.from_dict(a) for a in data.get("attempts", [])],
            success_count=success_count,
            ease_factor=float(ease_factor),
            interval=data.get("interval", 0),
            last_review_position=data.get("last_review_position", 0),
            next_due_position=data.get("next_due_position", 0),
        )


@dataclass
class TopicProgress:
    topic: str
    comprehension: int = 0
    attempts: list[Attempt] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "topic": self.topic,
            "comprehension": self.comprehension,
            "attempts": [a.to_dict() for a in self.attempts],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TopicProgress":
        return cls(
            topic=_require(data, "topic", "TopicProgress"),
            comprehension=data.get("comprehension", 0),
            attempts=[Attempt.from_dict(a) for a in data.get("attempts", [])],
        )


@dataclass(frozen=True)
class SpecialQuestionRecord:
    type: SpecialQuestionType
    question: str
    answer: str
    feedback: str = ""
    target_item: Optional[str] = None
    connected_item: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "question": self.question,
            "answer": self.answer,
            "feedback": self.feedback,
            "target_item": self.target_item,
            "connected_item": self.connected_item,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SpecialQuestionRecord":
        return cls(
            type=_enum(SpecialQuestionType, _require(data, "type", "SpecialQuestionRecord"),
                       "SpecialQuestionRecord"),
            question=data.get("question", ""),
            answer=data.get("answer", ""),
            feedback=data.get("feedback", ""),
            target_item=data.get("target_item"),
            connected_item=data.get("connected_item"),
            timestamp=_ts(data.get("timestamp")),
        )


@dataclass
class ConceptProgress:
    concept: str
    items: dict[str, ItemProgress] = field(default_factory=dict)
    topics: dict[str, TopicProgress] = field(default_factory=dict)
    special_questions: list[SpecialQuestionRecord] = field(default_factory=list)
    global_position: int = 0
    # answered topic questions, counted against the per-concept cap
    questions_asked: int = 0

    def to_dict(self) -> dict:
        return {
            "concept": self.concept,
            "items": [p.to_dict() for p in self.items.values()],
            "topics": [p.to_dict() for p in self.topics.values()],
            "special_questions": [q.to_dict() for q in self.special_questions],
            "global_position": self.global_position,
            "questions_asked": self.questions_asked,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ConceptProgress":
        items = [ItemProgress.from_dict(i) for i in data.get("items", [])]
        topics = [TopicProgress.from_dict(t) for t in data.get("topics", [])]
        return cls(
            concept=_require(data, "concept", "ConceptProgress"),
            items={i.item: i for i in items},
            topics={t.topic: t for t in topics},
            special_questions=[
                SpecialQuestionRecord.from_dict(q) for q in data.get("special_questions", [])
            ],
            global_position=data.get("global_position", 0),
            questions_asked=data.get("questions_asked", 0),
        )


@dataclass
class FlashcardScheduleEntry:
    """Working copy of an item's scheduling fields for one memorization round."""
    item: str
    ease_factor: float = INITIAL_EASE
    interval: int = 0
    due_position: int = 0
    success_count: int = 0

    @property
    def active(self) -> bool:
        return self.success_count < MASTERY_SUCCESSES


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConversationEntry:
    role: Role
    text: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {"role": self.role.value, "text": self.text, "timestamp": self.timestamp.isoformat()}

    @classmethod
    def from_dict(cls, data: dict) -> "ConversationEntry":
        return cls(
            role=_enum(Role, _require(data, "role", "ConversationEntry"), "ConversationEntry"),
            text=data.get("text", ""),
            timestamp=_ts(data.get("timestamp")),
        )


@dataclass
class LearningSession:
    user_id: str
    course_id: str
    understanding: UnderstandingLevel = UnderstandingLevel.INTERMEDIATE
    time_budget: TimeBudget = TimeBudget.STANDARD
    phase: Phase = Phase.INITIALIZATION
    current_concept: Optional[str] = None
    concept_stage: ConceptStage = ConceptStage.PENDING
    conversation: list[ConversationEntry] = field(default_factory=list)
    concepts: dict[str, ConceptProgress] = field(default_factory=dict)
    skipped_concepts: list[str] = field(default_factory=list)
    connection_questions: int = 0
    started_at: datetime = field(default_factory=datetime.now)
    last_activity_at: datetime = field(default_factory=datetime.now)

    @property
    def is_complete(self) -> bool:
        return self.phase is Phase.COMPLETE

    def add_message(self, role: Role, text: str) -> None:
        self.conversation.append(ConversationEntry(role=role, text=text))
        self.last_activity_at = datetime.now()

    def history(self, limit: int = 10) -> list[ConversationEntry]:
        return self.conversation[-limit:] if limit else []

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "course_id": self.course_id,
            "understanding": self.understanding.value,
            "time_budget": self.time_budget.value,
            "phase": self.phase.value,
            "current_concept": self.current_concept,
            "concept_stage": self.concept_stage.value,
            "conversation": [e.to_dict() for e in self.conversation],
            "concepts": [c.to_dict() for c in self.concepts.values()],
            "skipped_concepts": list(self.skipped_concepts),
            "connection_questions": self.connection_questions,
            "started_at": self.started_at.isoformat(),
            "last_activity_at": self.last_activity_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LearningSession":
        concepts = [ConceptProgress.from_dict(c) for c in data.get("concepts", [])]
        return cls(
            user_id=_require(data, "user_id", "LearningSession"),
            course_id=_require(data, "course_id", "LearningSession"),
            understanding=_enum(UnderstandingLevel, data.get("understanding", "intermediate"),
                                "LearningSession"),
            time_budget=_enum(TimeBudget, data.get("time_budget", "1-6hours"), "LearningSession"),
            phase=_enum(Phase, data.get("phase", "initialization"), "LearningSession"),
            current_concept=data.get("current_concept"),
            concept_stage=_enum(ConceptStage, data.get("concept_stage", "pending"),
                                "LearningSession"),
            conversation=[ConversationEntry.from_dict(e) for e in data.get("conversation", [])],
            concepts={c.concept: c for c in concepts},
            skipped_concepts=list(data.get("skipped_concepts", [])),
            connection_questions=data.get("connection_questions", 0),
            started_at=_ts(data.get("started_at")),
            last_activity_at=_ts(data.get("last_activity_at")),
        )
