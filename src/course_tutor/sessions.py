"""Course and learning-session persistence."""
import json
import re
import sqlite3
from datetime import datetime
from typing import Optional

from loguru import logger

from course_tutor.db import get_connection
from course_tutor.errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from course_tutor.models import Course, LearningSession, Phase


def _check_ref(value, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} must be a non-empty string")
    return value


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "course"


def save_course(db_path: str, course: Course, topic: Optional[str] = None,
                document_id: Optional[int] = None) -> str:
    """Store a generated course and return its id."""
    _check_ref(course.name, "course name")
    base = slugify(course.name)
    try:
        conn = get_connection(db_path)
        try:
            with conn:
                course_id, n = base, 1
                while conn.execute("SELECT 1 FROM courses WHERE id = ?", (course_id,)).fetchone():
                    n += 1
                    course_id = f"{base}-{n}"
                conn.execute(
                    "INSERT INTO courses (id, name, topic, structure, document_id, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                    (course_id, course.name, topic, json.dumps(course.to_dict()), document_id,
                     datetime.now().isoformat()),
                )
        finally:
            conn.close()
    except sqlite3.Error as e:
        raise PersistenceError(f"Could not save course '{course.name}': {e}") from e
    logger.info(f"Saved course {course_id}")
    return course_id


def load_course(db_path: str, course_id: str) -> Course:
    _check_ref(course_id, "course_id")
    conn = get_connection(db_path)
    row = conn.execute("SELECT structure FROM courses WHERE id = ?", (course_id,)).fetchone()
    conn.close()
    if row is None:
        raise NotFoundError(f"Unknown course '{course_id}'")
    return Course.from_dict(json.loads(row["structure"]))


def list_courses(db_path: str) -> list[dict]:
    conn = get_connection(db_path)
    rows = conn.execute(
        "SELECT id, name, topic, structure, created_at FROM courses ORDER BY created_at"
    ).fetchall()
    conn.close()
    return [
        {
            "id": r["id"],
            "name": r["name"],
            "topic": r["topic"],
            "concepts": len(json.loads(r["structure"])["concepts"]),
            "created_at": r["created_at"],
        }
        for r in rows
    ]


def create_session(db_path: str, session: LearningSession) -> LearningSession:
    """Insert a new active session. Rejects a second active one for the same pair."""
    _check_ref(session.user_id, "user_id")
    _check_ref(session.course_id, "course_id")
    conn = get_connection(db_path)
    try:
        if not conn.execute("SELECT 1 FROM courses WHERE id = ?", (session.course_id,)).fetchone():
            raise NotFoundError(f"Unknown course '{session.course_id}'")
        existing = conn.execute(
            "SELECT 1 FROM sessions WHERE user_id = ? AND course_id = ? AND status = 'active'",
            (session.user_id, session.course_id),
        ).fetchone()
        if existing:
            raise ConflictError(
                f"User '{session.user_id}' already has an active session for '{session.course_id}'"
            )
        now = datetime.now().isoformat()
        with conn:
            conn.execute(
                "INSERT INTO sessions (user_id, course_id, phase, status, state, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (session.user_id, session.course_id, session.phase.value, _status(session),
                 json.dumps(session.to_dict()), now, now),
            )
    except sqlite3.IntegrityError as e:
        raise ConflictError(str(e)) from e
    except sqlite3.Error as e:
        raise PersistenceError(f"Could not create session: {e}") from e
    finally:
        conn.close()
    logger.info(f"Created session for {session.user_id}/{session.course_id}")
    return session


def _status(session: LearningSession) -> str:
    return "complete" if session.phase is Phase.COMPLETE else "active"


def _latest_row(conn: sqlite3.Connection, user_id: str, course_id: str) -> Optional[sqlite3.Row]:
    return conn.execute(
        """SELECT * FROM sessions WHERE user_id = ? AND course_id = ?
        ORDER BY status = 'active' DESC, id DESC LIMIT 1""",
        (user_id, course_id),
    ).fetchone()


def load_session(db_path: str, user_id: str, course_id: str) -> LearningSession:
    _check_ref(user_id, "user_id")
    _check_ref(course_id, "course_id")
    conn = get_connection(db_path)
    row = _latest_row(conn, user_id, course_id)
    conn.close()
    if row is None:
        raise NotFoundError(f"No session for user '{user_id}' and course '{course_id}'")
    return LearningSession.from_dict(json.loads(row["state"]))


def save_session(db_path: str, session: LearningSession) -> None:
    """Write the whole session in one transaction."""
    try:
        conn = get_connection(db_path)
        try:
            with conn:
                row = _latest_row(conn, session.user_id, session.course_id)
                if row is None:
                    raise NotFoundError(
                        f"No session for user '{session.user_id}' and course '{session.course_id}'"
                    )
                conn.execute(
                    "UPDATE sessions SET phase = ?, status = ?, state = ?, updated_at = ? WHERE id = ?",
                    (session.phase.value, _status(session), json.dumps(session.to_dict()),
                     datetime.now().isoformat(), row["id"]),
                )
        finally:
            conn.close()
    except sqlite3.Error as e:
        raise PersistenceError(f"Could not save session: {e}") from e


def list_sessions(db_path: str, user_id: str) -> list[dict]:
    conn = get_connection(db_path)
    rows = conn.execute(
        """SELECT s.course_id, c.name AS course_name, s.phase, s.status, s.updated_at
        FROM sessions s JOIN courses c ON s.course_id = c.id
        WHERE s.user_id = ?
        ORDER BY s.updated_at DESC""",
        (user_id,),
    ).fetchall()
    conn.close()
    return [dict(r) for r in rows]
