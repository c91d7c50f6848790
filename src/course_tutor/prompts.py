"""Prompt templates for the LLM-backed generator."""
from course_tutor.models import UnderstandingLevel

SYSTEM_TUTOR = """You are a patient Socratic tutor.
Ask one question at a time, build on what the learner already said and
never reveal an answer before the learner has tried.
Learner level: {level}."""

DEPTH_GUIDANCE = {
    UnderstandingLevel.BEGINNER: "Use plain language and concrete everyday examples.",
    UnderstandingLevel.INTERMEDIATE: "Assume the basics; focus on how the ideas fit together.",
    UnderstandingLevel.ADVANCED: "Probe edge cases, trade-offs and expert nuance.",
}

QUESTION = {
    "overview": """Course: {course}
Background topics and current comprehension (0-5):
{topics}
Ask a single open question that targets the weakest topic.{intro}""",
    "concept": """Concept: {concept}
Topics and current comprehension (0-5):
{topics}
Ask a single open question about the least understood topic.""",
    "elaboration": """The learner just answered a flashcard about "{item}" (fields: {fields}).
Their answer: {answer}
Feedback given: {feedback}
Ask one "why" question that makes them elaborate on the underlying reason.""",
    "connection": """Concept: {concept}
The learner recalled "{item}" well but struggles with "{target}".
Ask one question that connects the two items.""",
    "high-level-recall": """Concept: {concept}
Items practised so far: {items}
Weak topics: {weak_topics}
Struggling items: {struggling}
Ask one question that zooms out to the big picture of the concept.""",
    "synthesis": """Course: {course}
Connection themes: {connections}
Questions already asked:
{previous}
Ask one new scenario-based question that requires combining several concepts.""",
    "flashcard": """Ask the learner to describe these fields for "{item}": {fields}.""",
}

EVALUATE = """Question: {question}
Learner answer: {answer}
Context: {context}
Respond with JSON only:
{{"comprehension": <integer 0-5>, "feedback": "<short feedback>",
  "target_topic": "<topic or null>",
  "topic_scores": [{{"topic": "<one of: {topic_names}>", "score": <0-5>}}],
  "follow_up": "<optional follow-up challenge or null>"}}"""

EXPLAIN = """Course: {course}
The learner asks: {question}
Answer clearly in a few short paragraphs."""

COURSE = """Design a course on: {topic}
Time available: {time_budget}
Learner level: {level}
Focus: {focus}
{document}
Respond with JSON only:
{{"name": "<course name>",
  "background_topics": ["<foundational topic>", ...],
  "concepts": [{{"name": "<concept>", "topics": ["<high-level topic>", ...],
                "memorize_fields": ["<column header>", ...],
                "memorize_items": ["<item name>", ...]}}],
  "connection_topics": ["<cross-concept theme>", ...]}}
Keep the number of concepts proportional to the time available."""
