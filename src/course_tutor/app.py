"""Interactive CLI application."""
import random
from pathlib import Path
from typing import Optional

from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from rich.text import Text

from course_tutor.config import Settings, configure_logging, get_settings
from course_tutor.db import init_db
from course_tutor.errors import TutorError
from course_tutor.generation import CourseConstraints, LLMGenerator
from course_tutor.importer import excerpt, get_document_text, import_document
from course_tutor.models import TimeBudget, UnderstandingLevel
from course_tutor.phases import initialize_course, run_session
from course_tutor.progress import get_mastery_color, get_mastery_label, get_progress_report
from course_tutor.sessions import list_courses, list_sessions, load_course, load_session
from course_tutor.turns import TurnContext

console = Console()

EXIT_COMMANDS = ("/quit", "/menu")


class SessionExitRequested(Exception):
    """Raised when the learner types /quit or /menu during a session."""


def session_prompt(prompt: str, **kwargs) -> str:
    """Prompt.ask that raises SessionExitRequested on an exit command."""
    answer = Prompt.ask(prompt, **kwargs)
    if answer.strip().lower() in EXIT_COMMANDS:
        raise SessionExitRequested()
    return answer


class ConsoleLearner:
    """Learner backed by the terminal."""

    def ask(self, prompt: str) -> str:
        while True:
            answer = session_prompt(f"\n[bold]{prompt}[/bold]")
            if answer.strip():
                return answer
            console.print("[red]Please enter an answer (or /quit to leave).[/red]")

    def confirm(self, prompt: str, default: bool = True) -> bool:
        answer = session_prompt(f"{prompt}", choices=["y", "n"], default="y" if default else "n")
        return answer.strip().lower() == "y"

    def show(self, text: str, style: str = "", title: Optional[str] = None) -> None:
        if title:
            console.print(Panel(Text(text), title=title, border_style=style or "cyan"))
        else:
            console.print(Text(text, style=style))


def build_context(settings: Settings, learner=None) -> TurnContext:
    generator = LLMGenerator(
        base_url=settings.llm_base_url,
        api_key=settings.llm_api_key,
        model=settings.llm_model,
        timeout=settings.llm_timeout,
    )
    return TurnContext(
        db_path=settings.db_path,
        generator=generator,
        learner=learner or ConsoleLearner(),
        course_provider=generator,
        rng=random.Random(settings.random_seed),
        persist_retries=settings.persist_retries,
        max_topic_questions=settings.max_topic_questions,
        confirm_every=settings.confirm_every,
        max_connection_questions=settings.max_connection_questions,
        history_window=settings.history_window,
    )


def show_welcome():
    console.print(Panel(
        "[bold]Course Tutor[/bold]\n[dim]Overview, concepts, flashcards and connections[/dim]",
        title="Welcome", border_style="blue",
    ))


def show_menu():
    console.print("\n[bold]Commands:[/bold]")
    commands = [
        ("start", "Start a new course"),
        ("resume", "Continue a course in progress"),
        ("list", "List courses and sessions"),
        ("progress", "Mastery report for a course"),
        ("quit", "Exit"),
    ]
    for cmd, desc in commands:
        console.print(f"  [cyan]{cmd:<14}[/cyan] {desc}")
    console.print("[dim]Type /quit during a session to return here; progress is saved after every answer.[/dim]")


def choose_time_budget() -> TimeBudget:
    options = list(TimeBudget)
    console.print("\n[bold]How much time do you have?[/bold]")
    for i, budget in enumerate(options, 1):
        console.print(f"  [cyan]{i}[/cyan]) {budget.label}")
    choice = session_prompt("Select", choices=[str(i) for i in range(1, len(options) + 1)], default="3")
    return options[int(choice) - 1]


def choose_understanding() -> UnderstandingLevel:
    options = list(UnderstandingLevel)
    console.print("\n[bold]How well do you already know this?[/bold]")
    for i, level in enumerate(options, 1):
        console.print(f"  [cyan]{i}[/cyan]) {level.label}")
    choice = session_prompt("Select", choices=[str(i) for i in range(1, len(options) + 1)], default="2")
    return options[int(choice) - 1]


def cmd_start(ctx: TurnContext, user_id: str):
    console.print("\n[bold]New Course[/bold]")
    source = session_prompt("Learn from a topic or a document?", choices=["topic", "file"], default="topic")
    document, document_id = None, None
    if source == "file":
        file_path = session_prompt("File path")
        result = import_document(ctx.db_path, file_path)
        console.print(f"[green]Imported {result['filename']} ({result['length']} chars)[/green]")
        document_id = result["document_id"]
        document = excerpt(get_document_text(ctx.db_path, document_id))
        topic = session_prompt("What is this document about?", default=Path(file_path).stem)
    else:
        topic = session_prompt("What do you want to learn?")
    constraints = CourseConstraints(
        time_budget=choose_time_budget(),
        understanding=choose_understanding(),
        focus=session_prompt("Anything specific to focus on? (optional)", default=""),
        document=document,
    )
    with console.status("[dim]Designing your course...[/dim]"):
        session, course = initialize_course(ctx, user_id, topic, constraints, document_id=document_id)
    run_session(ctx, session, course)


def _pick_session(db_path: str, user_id: str, active_only: bool) -> Optional[dict]:
    sessions = list_sessions(db_path, user_id)
    if active_only:
        sessions = [s for s in sessions if s["status"] == "active"]
    if not sessions:
        return None
    table = Table()
    table.add_column("#", justify="right")
    table.add_column("Course", style="cyan")
    table.add_column("Phase")
    table.add_column("Last activity")
    for i, s in enumerate(sessions, 1):
        table.add_row(str(i), s["course_name"], s["phase"], s["updated_at"][:16].replace("T", " "))
    console.print(table)
    choice = session_prompt("Select session", choices=[str(i) for i in range(1, len(sessions) + 1)], default="1")
    return sessions[int(choice) - 1]


def cmd_resume(ctx: TurnContext, user_id: str):
    picked = _pick_session(ctx.db_path, user_id, active_only=True)
    if picked is None:
        console.print("[yellow]No courses in progress. Use 'start' to begin one.[/yellow]")
        return
    course = load_course(ctx.db_path, picked["course_id"])
    session = load_session(ctx.db_path, user_id, picked["course_id"])
    where = session.phase.value
    if session.current_concept:
        where += f" - {session.current_concept}"
    console.print(Panel(f"[bold]{course.name}[/bold]\n[dim]Resuming at {where}[/dim]", border_style="blue"))
    run_session(ctx, session, course)


def cmd_list(db_path: str, user_id: str):
    courses = list_courses(db_path)
    if not courses:
        console.print("[yellow]No courses yet.[/yellow]")
        return
    table = Table(title="Courses")
    table.add_column("Id", style="cyan")
    table.add_column("Name")
    table.add_column("Concepts", justify="right")
    table.add_column("Created")
    for c in courses:
        table.add_row(c["id"], c["name"], str(c["concepts"]), (c["created_at"] or "")[:10])
    console.print(table)

    sessions = list_sessions(db_path, user_id)
    if sessions:
        table = Table(title="Your Sessions")
        table.add_column("Course", style="cyan")
        table.add_column("Phase")
        table.add_column("Status")
        for s in sessions:
            status = f"[green]{s['status']}[/green]" if s["status"] == "complete" else s["status"]
            table.add_row(s["course_name"], s["phase"], status)
        console.print(table)


def cmd_progress(db_path: str, user_id: str):
    picked = _pick_session(db_path, user_id, active_only=False)
    if picked is None:
        console.print("[yellow]No sessions yet.[/yellow]")
        return
    report = get_progress_report(db_path, user_id, picked["course_id"])

    score = report["percentage"]
    color = get_mastery_color(score)
    bar_filled = int(score / 5)
    bar = f"[{color}]{'█' * bar_filled}{'░' * (20 - bar_filled)}[/{color}]"
    console.print(Panel(f"[bold]{report['course']}[/bold]  [dim]({report['phase']})[/dim]",
                        title="Progress", border_style="blue"))
    console.print(f"\n  Overall Mastery: [bold]{score}%[/bold] {bar} [{color}]{report['label']}[/{color}]\n")

    overview = report["overview"]
    table = Table(title="Concept Breakdown")
    table.add_column("Concept", style="cyan")
    table.add_column("Topics", justify="right")
    table.add_column("Items", justify="right")
    table.add_column("Avg", justify="right")
    table.add_column("Mastery", justify="right")
    table.add_column("Status")
    table.add_row("Overview", f"{overview.mastered_topics}/{overview.total_topics}", "-",
                  f"{overview.average_comprehension:.1f}", f"{overview.percentage}%", "")
    for cm in report["concepts"]:
        c = get_mastery_color(cm.percentage)
        status = "[dim]SKIPPED[/dim]" if cm.skipped else f"[{c}]{get_mastery_label(cm.percentage)}[/{c}]"
        table.add_row(
            cm.concept,
            f"{cm.mastered_topics}/{cm.total_topics}",
            f"{cm.mastered_items}/{cm.total_items}",
            f"{cm.average_comprehension:.1f}",
            f"{cm.percentage}%",
            status,
        )
    console.print(table)

    struggling = [(concept, s) for concept, items in report["struggling"].items() for s in items]
    if struggling:
        console.print("\n[bold]Struggling Items:[/bold]")
        for concept, s in struggling[:5]:
            console.print(f"  [red]avg {s.average_comprehension:.1f}[/red] {s.item} ({concept})")


def main():
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_file)
    init_db(settings.db_path)
    ctx = build_context(settings)

    show_welcome()

    while True:
        show_menu()
        choice = Prompt.ask("\n[bold]>[/bold]", default="resume").strip().lower()
        try:
            if choice == "start":
                cmd_start(ctx, settings.user_id)
            elif choice == "resume":
                cmd_resume(ctx, settings.user_id)
            elif choice == "list":
                cmd_list(ctx.db_path, settings.user_id)
            elif choice == "progress":
                cmd_progress(ctx.db_path, settings.user_id)
            elif choice in ("quit", "exit", "q"):
                console.print("[dim]Happy learning![/dim]")
                break
            else:
                console.print("[red]Unknown command. Try again.[/red]")
        except SessionExitRequested:
            console.print("\n[dim]Progress saved. Back to the menu.[/dim]")
        except TutorError as e:
            console.print(f"[red]Error: {e}[/red]")
        except KeyboardInterrupt:
            console.print("\n[dim]Use 'quit' to exit.[/dim]")
        except Exception as e:
            logger.exception("Unexpected error")
            console.print(f"[red]Error: {e}[/red]")
    ctx.generator.close()


if __name__ == "__main__":
    main()
