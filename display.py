import os
from typing import List, Optional

from rich.align import Align
from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

import config
from code_execution import CaseStatus, ExecutionOutcome, ExecutionReport
from models import ChoiceQuestion, CodeQuestion, FreeTextQuestion, Question, TestDefinition
from proctoring import ProctoringMonitor
from question_views import ChoiceView, CodeView, FreeTextView, QuestionView
from results import EvaluationStatus, GradeBreakdown, GradedResponse
from timer import format_seconds

custom_theme = Theme({
    "correct": "bold green",
    "wrong": "bold red",
    "skip": "dim",
    "pending": "bold yellow",
    "needs_work": "bold yellow",
    "info": "bold cyan",
    "header": "bold magenta",
    "timer_ok": "bold green",
    "timer_warn": "bold yellow",
    "timer_critical": "bold red",
})

console = Console(theme=custom_theme)


# ---------------------------------------------------------------------------
# General UI
# ---------------------------------------------------------------------------

def clear_screen() -> None:
    os.system("cls" if os.name == "nt" else "clear")


def show_banner() -> None:
    banner = Text()
    banner.append("  Timed Assessment  ", style="bold white on blue")
    console.print()
    console.print(Align.center(banner))
    console.print(Align.center(Text("Answer carefully. The clock keeps running.", style="dim")))
    console.print()


def show_menu(title: str, options: List[str]) -> int:
    """Show a numbered menu and return 1-indexed selection."""
    console.print(Rule(title, style="header"))
    console.print()
    for i, option in enumerate(options, 1):
        console.print(f"  [bold cyan]{i}.[/bold cyan] {option}")
    console.print()

    while True:
        try:
            raw = console.input("[bold]Choose an option: [/bold]").strip()
            choice = int(raw)
            if 1 <= choice <= len(options):
                return choice
            console.print(f"  Please enter a number between 1 and {len(options)}.", style="wrong")
        except (ValueError, EOFError):
            console.print(f"  Please enter a number between 1 and {len(options)}.", style="wrong")


def show_error(message: str) -> None:
    console.print(f"  [wrong]Error:[/wrong] {message}")


def show_success(message: str) -> None:
    console.print(f"  [correct]{message}[/correct]")


def show_info(message: str) -> None:
    console.print(f"  [info]{message}[/info]")


def show_warning(message: str) -> None:
    console.print(f"  [needs_work]Warning:[/needs_work] {message}")


def confirm(prompt: str) -> bool:
    while True:
        raw = console.input(f"  {prompt} [bold](y/n)[/bold]: ").strip().lower()
        if raw in ("y", "yes"):
            return True
        if raw in ("n", "no"):
            return False
        console.print("  Please enter y or n.", style="dim")


def prompt_text(prompt: str, default: str = "") -> str:
    suffix = f" [{default}]" if default else ""
    raw = console.input(f"  {prompt}{suffix}: ").strip()
    return raw if raw else default


def prompt_multiline(hint: str = "Press Enter twice on a blank line when done.") -> str:
    """Collect multi-line text. Double blank line or Ctrl+D to finish."""
    console.print(f"  [dim]{hint}[/dim]")
    lines = []
    blank_count = 0
    while True:
        try:
            line = console.input("  ")
        except EOFError:
            break
        if line.strip() == "":
            blank_count += 1
            if blank_count >= 2:
                break
            lines.append("")
        else:
            blank_count = 0
            lines.append(line)
    return "\n".join(lines).rstrip()


def press_enter_to_continue() -> None:
    try:
        console.input("  [dim]Press Enter to continue...[/dim]")
    except EOFError:
        pass


# ---------------------------------------------------------------------------
# Timer display
# ---------------------------------------------------------------------------

def format_time_remaining(seconds: int) -> str:
    """Return formatted time string with color based on remaining time."""
    time_str = format_seconds(seconds)

    if seconds <= config.TIMER_CRITICAL_SECONDS:
        return f"[timer_critical]{time_str}[/timer_critical]"
    elif seconds <= max(config.TIMER_WARNING_SECONDS):
        return f"[timer_warn]{time_str}[/timer_warn]"
    else:
        return f"[timer_ok]{time_str}[/timer_ok]"


def show_timer_warning(seconds_left: int) -> None:
    minutes = seconds_left // 60
    label = f"{minutes} minute{'s' if minutes != 1 else ''}" if minutes else f"{seconds_left} seconds"
    console.print()
    show_warning(f"Only {label} left! Your test will be submitted automatically at 00:00.")


# ---------------------------------------------------------------------------
# Test and question display
# ---------------------------------------------------------------------------

def show_test_intro(test: TestDefinition) -> None:
    lines = [f"[bold]{test.title or 'Untitled test'}[/bold]", ""]
    if test.description:
        lines += [test.description, ""]
    lines.append(f"Questions: {len(test.questions)}")
    lines.append(f"Duration: {format_seconds(test.duration_seconds)}")
    lines.append(f"Total marks: {test.max_marks:g}")
    if test.passing_marks is not None:
        lines.append(f"Passing marks: {test.passing_marks:g}")
    lines += ["", "[dim]The test is submitted automatically when the timer reaches 00:00.[/dim]"]
    console.print()
    console.print(Panel("\n".join(lines), border_style="blue", padding=(1, 2)))
    console.print()


def show_navigator(questions: List[Question], answered: List[str], current: int) -> None:
    """One-line overview: answered questions in green, current in reverse."""
    line = Text("  ")
    for i, q in enumerate(questions):
        style = "bold green" if q.id in answered else "dim"
        if i == current:
            style += " reverse"
        line.append(f" {i + 1} ", style=style)
        line.append(" ")
    console.print(line)
    console.print(f"  [dim]Answered {len(answered)} of {len(questions)}[/dim]")


def show_question(
    question_number: int,
    total: int,
    view: QuestionView,
    time_remaining: Optional[int] = None,
) -> None:
    """Render a question and the learner's current input."""
    question = view.question
    console.print()

    header_parts = [f"Question {question_number}/{total}",
                    config.QUESTION_KIND_DISPLAY.get(question.kind.value, question.kind.value),
                    f"{question.marks:g} mark{'s' if question.marks != 1 else ''}"]
    if time_remaining is not None:
        header_parts.append(f"Time: {format_time_remaining(time_remaining)}")
    header = "  |  ".join(header_parts)

    console.print(Panel(
        f"[bold]{question.prompt}[/bold]",
        title=f"[header]{header}[/header]",
        border_style="blue",
        padding=(0, 2),
    ))

    if isinstance(view, ChoiceView):
        _show_choice(view)
    elif isinstance(view, FreeTextView):
        _show_free_text(view)
    elif isinstance(view, CodeView):
        _show_code(view)
    console.print()


def _show_choice(view: ChoiceView) -> None:
    question: ChoiceQuestion = view.question
    if question.multi_select:
        console.print("  [dim]Select all that apply.[/dim]")
    for i, option in enumerate(question.options, 1):
        mark = "[correct]x[/correct]" if option.option_id in view.selected else " "
        console.print(f"    [{mark}] [bold]{i})[/bold] {option.text}")


def _show_free_text(view: FreeTextView) -> None:
    question: FreeTextQuestion = view.question
    if view.text:
        console.print(Panel(view.text, title="Your answer", border_style="dim", padding=(0, 1)))
    else:
        console.print("  [skip]Not answered yet.[/skip]")
    count = f"{view.word_count} words"
    if question.expected_word_count:
        count += f" (suggested: {question.expected_word_count})"
    style = "needs_work" if view.over_word_limit else "dim"
    console.print(f"  [{style}]{count}[/{style}]")


def _show_code(view: CodeView) -> None:
    question: CodeQuestion = view.question
    if question.constraints:
        console.print(f"  [dim]Constraints: {question.constraints}[/dim]")
    limits = []
    if question.time_limit_ms:
        limits.append(f"time {question.time_limit_ms} ms")
    if question.memory_limit_mb:
        limits.append(f"memory {question.memory_limit_mb} MB")
    if limits:
        console.print(f"  [dim]Limits: {', '.join(limits)}[/dim]")

    if question.sample_cases:
        table = Table(title="Sample cases", border_style="dim", padding=(0, 1))
        table.add_column("#", justify="right")
        table.add_column("Input")
        table.add_column("Expected output")
        for i, case in enumerate(question.sample_cases, 1):
            table.add_row(str(i), case.input, case.expected_output)
        console.print(table)

    lexer = "cpp" if view.language == "cpp" else view.language
    title = f"{view.language}{' (starter template)' if view.is_template else ''}"
    console.print(Panel(Syntax(view.source, lexer, line_numbers=True), title=title, border_style="cyan"))

    if view.is_running:
        console.print("  [info]Running...[/info]")
    elif view.report is not None:
        show_execution_report(view.report)


def show_execution_report(report: ExecutionReport) -> None:
    if report.outcome is ExecutionOutcome.REJECTED:
        show_warning(report.message or "Nothing to run.")
        return
    if report.outcome is ExecutionOutcome.FAILED:
        show_error(report.message or "Code execution failed.")
        return

    table = Table(title="Execution results", border_style="blue", padding=(0, 1))
    table.add_column("#", justify="right")
    table.add_column("Input")
    table.add_column("Expected")
    table.add_column("Actual")
    table.add_column("Time", justify="right")
    table.add_column("Status")

    for i, result in enumerate(report.results, 1):
        if result.status is CaseStatus.PASSED:
            status = "[correct]PASSED[/correct]"
        elif result.status is CaseStatus.FAILED:
            status = "[wrong]FAILED[/wrong]"
        else:
            status = "[wrong]ERROR[/wrong]"
        actual = result.error_message if result.status is CaseStatus.ERROR else result.actual_output
        time_str = f"{result.execution_time_ms:g} ms" if result.execution_time_ms is not None else ""
        table.add_row(str(i), result.input, result.expected_output, actual or "", time_str, status)

    console.print(table)
    style = "correct" if report.all_passed else "needs_work"
    console.print(f"  [{style}]Passed {report.passed}/{report.total} test cases[/{style}]")
    if report.message:
        console.print(f"  [wrong]{report.message}[/wrong]")


def show_proctoring_status(monitor: ProctoringMonitor) -> None:
    camera_style = {"enabled": "correct", "error": "wrong"}.get(monitor.camera_status, "skip")
    parts = [
        f"Camera: [{camera_style}]{monitor.camera_status}[/{camera_style}]",
        f"Fullscreen: {'on' if monitor.is_fullscreen else 'off'}",
    ]
    if monitor.violations:
        parts.append(f"[wrong]Violations: {monitor.violations}[/wrong]")
    if monitor.tab_switches:
        parts.append(f"[needs_work]Tab switches: {monitor.tab_switches}[/needs_work]")
    console.print("  " + "  |  ".join(parts))


# ---------------------------------------------------------------------------
# Results display
# ---------------------------------------------------------------------------

def _status_label(response: GradedResponse) -> str:
    if response.evaluation_status is EvaluationStatus.PENDING_MANUAL_REVIEW:
        return "[pending]Pending review[/pending]"
    if response.evaluation_status is EvaluationStatus.EVALUATED:
        return "[correct]Evaluated[/correct]"
    return "[info]Auto-evaluated[/info]"


def _score_label(response: GradedResponse) -> str:
    if response.score is None:
        return f"[skip]-/{response.max_marks:g}[/skip]"
    style = "correct" if response.score > 0 else "wrong"
    return f"[{style}]{response.score:g}/{response.max_marks:g}[/{style}]"


def show_grade_breakdown(breakdown: GradeBreakdown) -> None:
    """Display the results report for one submission."""
    console.print()
    console.print(Rule(f"[bold]RESULTS - {breakdown.test_title or 'Test'}[/bold]", style="header"))
    if breakdown.submitted_at:
        console.print(Align.center(Text(f"Submitted: {breakdown.submitted_at[:19].replace('T', ' ')}", style="dim")))
    console.print()

    summary = Table(border_style="blue", padding=(0, 1), show_header=False)
    summary.add_column("Metric", style="bold")
    summary.add_column("Value", justify="right")
    summary.add_row("Multiple choice score",
                    f"{breakdown.choice_score:g}/{breakdown.choice_max:g} ({breakdown.choice_percentage:.1f}%)")
    summary.add_row("Score so far", f"{breakdown.total_score:g}/{breakdown.scored_max:g}")
    summary.add_row("Maximum marks", f"{breakdown.total_max:g}")
    if breakdown.percentage is not None:
        summary.add_row("Percentage (graded)", f"{breakdown.percentage:.1f}%")
    if breakdown.fully_evaluated:
        summary.add_row("Status", "[correct]Fully evaluated[/correct]")
    else:
        summary.add_row("Status", f"[pending]Evaluation pending ({breakdown.pending_count} left)[/pending]")
    if breakdown.passed is not None and breakdown.fully_evaluated:
        summary.add_row("Result", "[correct]Passed[/correct]" if breakdown.passed else "[wrong]Not passed[/wrong]")
    console.print(summary)
    console.print()

    for kind, responses in breakdown.by_kind().items():
        if not responses:
            continue
        console.print(Rule(config.QUESTION_KIND_DISPLAY.get(kind.value, kind.value), style="dim"))
        for i, response in enumerate(responses, 1):
            console.print(f"  [bold]{i}. {response.question_text or response.question_id}[/bold]")
            console.print(f"     {_score_label(response)}  {_status_label(response)}")
            if response.options:
                console.print(f"     Your answer: {response.selected_option_text()}")
                correct = response.correct_option_text()
                if correct:
                    console.print(f"     [correct]Correct answer: {correct}[/correct]")
            if response.comments:
                console.print(f"     [dim]Comments: {response.comments}[/dim]")
        console.print()

    console.print(Rule(style="dim"))
