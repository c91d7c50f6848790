import pytest
from unittest.mock import patch
from conftest import ScriptedGenerator, ScriptedLearner, make_course

from course_tutor.app import (
    ConsoleLearner, SessionExitRequested, build_context, cmd_list, cmd_progress, cmd_resume, cmd_start, main,
    session_prompt,
)
from course_tutor.config import Settings
from course_tutor.db import init_db
from course_tutor.generation import LLMGenerator
from course_tutor.models import Phase, TimeBudget, UnderstandingLevel
from course_tutor.phases import run_session
from course_tutor.sessions import list_sessions, load_session


def test_session_exit_requested_is_exception():
    with pytest.raises(SessionExitRequested):
        raise SessionExitRequested()


def test_session_prompt_raises_on_quit():
    with patch("course_tutor.app.Prompt.ask", return_value="/quit"):
        with pytest.raises(SessionExitRequested):
            session_prompt("test prompt")


def test_session_prompt_raises_on_menu():
    with patch("course_tutor.app.Prompt.ask", return_value="/menu"):
        with pytest.raises(SessionExitRequested):
            session_prompt("test prompt")


def test_session_prompt_returns_normal_input():
    with patch("course_tutor.app.Prompt.ask", return_value="hello"):
        assert session_prompt("test prompt") == "hello"


def test_console_learner_reprompts_on_empty_answer():
    with patch("course_tutor.app.Prompt.ask", side_effect=["", "ATP"]):
        assert ConsoleLearner().ask("Your answer") == "ATP"


def test_console_learner_confirm():
    with patch("course_tutor.app.Prompt.ask", return_value="n"):
        assert ConsoleLearner().confirm("Ready?") is False
    with patch("course_tutor.app.Prompt.ask", return_value="y"):
        assert ConsoleLearner().confirm("Ready?") is True


def test_console_learner_quit_mid_session(stored, course, make_ctx):
    ctx = make_ctx(learner=ConsoleLearner())
    with patch("course_tutor.app.Prompt.ask", side_effect=["mitochondria", "/quit"]):
        with pytest.raises(SessionExitRequested):
            run_session(ctx, stored, course)
    saved = load_session(ctx.db_path, "ada", stored.course_id)
    assert saved.conversation[1].text == "mitochondria"
    assert saved.phase is Phase.OVERVIEW


def test_build_context_uses_settings(tmp_db):
    settings = Settings(db_path=tmp_db, random_seed=3, max_topic_questions=5)
    ctx = build_context(settings, learner=ScriptedLearner())
    assert isinstance(ctx.generator, LLMGenerator)
    assert ctx.course_provider is ctx.generator
    assert ctx.max_topic_questions == 5
    ctx.generator.close()


def test_cmd_start_creates_course_and_pauses(tmp_db, make_ctx):
    init_db(tmp_db)
    provider = ScriptedGenerator(course=make_course())
    ctx = make_ctx(course_provider=provider, learner=ScriptedLearner(confirms=[False, False]))

    with patch("course_tutor.app.Prompt.ask", side_effect=["topic", "cells", "2", "1", ""]):
        cmd_start(ctx, "ada")

    assert provider.course_calls == 1
    session = load_session(tmp_db, "ada", "cell-biology")
    assert session.phase is Phase.OVERVIEW
    assert session.time_budget is TimeBudget.QUICK
    assert session.understanding is UnderstandingLevel.BEGINNER


def test_cmd_start_from_file(tmp_db, tmp_path, make_ctx):
    init_db(tmp_db)
    f = tmp_path / "cells.md"
    f.write_text("# Cells\nEverything alive is made of cells.")
    seen = []

    class Provider(ScriptedGenerator):
        def generate_course(self, topic, constraints):
            seen.append((topic, constraints.document))
            return super().generate_course(topic, constraints)

    ctx = make_ctx(course_provider=Provider(course=make_course()), learner=ScriptedLearner(confirms=[False, False]))
    with patch("course_tutor.app.Prompt.ask", side_effect=["file", str(f), "cells", "3", "2", "mitosis"]):
        cmd_start(ctx, "ada")

    assert seen[0][0] == "cells"
    assert "made of cells" in seen[0][1]


def test_cmd_resume_without_sessions(tmp_db, make_ctx):
    init_db(tmp_db)
    generator = ScriptedGenerator()
    with patch("course_tutor.app.Prompt.ask") as ask:
        cmd_resume(make_ctx(generator=generator), "ada")
    ask.assert_not_called()
    assert generator.question_requests == []


def test_cmd_resume_continues_session(stored, make_ctx):
    generator = ScriptedGenerator()
    ctx = make_ctx(generator=generator, learner=ScriptedLearner(confirms=[False, False]))
    with patch("course_tutor.app.Prompt.ask", return_value="1"):
        cmd_resume(ctx, "ada")
    assert generator.question_requests
    assert load_session(ctx.db_path, "ada", stored.course_id).concepts


def test_cmd_list_and_progress(stored, tmp_db):
    cmd_list(tmp_db, "ada")
    with patch("course_tutor.app.Prompt.ask", return_value="1"):
        cmd_progress(tmp_db, "ada")


def test_main_menu_loop(tmp_db, stored):
    settings = Settings(db_path=tmp_db, user_id="ada")
    with patch("course_tutor.app.get_settings", return_value=settings), \
            patch("course_tutor.app.configure_logging"), \
            patch("course_tutor.app.Prompt.ask", side_effect=["list", "dance", "progress", "1", "quit"]):
        main()
    assert len(list_sessions(tmp_db, "ada")) == 1
