#!/usr/bin/env python3
"""Timed Assessment: terminal front-end and menu system."""

import logging
import sys
import threading
import time
from typing import Dict, Optional

import config
import display
from api_client import ApiClient, ApiError
from code_execution import CodeExecutionClient, CodeRunner, ExecutionReport, RunRequest
from logging_config import configure_logging
from models import SessionState
from proctoring import DeviceCameraAccess, MonitoringEventType, ProctoringMonitor, TerminalFullscreen
from question_views import ChoiceView, CodeView, FreeTextView, QuestionView, view_for
from results import ResultsError, fetch_grade_breakdown
from session import SessionController, StartStatus, SubmitOutcome, SubmitStatus

logger = logging.getLogger(__name__)

CODE_RUN_WAIT_SECONDS = 60


def show_results(api: ApiClient, submission_id: str) -> None:
    """Fetch and render the grade breakdown, offering a retry on failure."""
    while True:
        try:
            with display.console.status("Loading results..."):
                breakdown = fetch_grade_breakdown(api, submission_id)
        except (ApiError, ResultsError) as e:
            display.show_error(f"Could not load results: {e}")
            if display.confirm("Try again?"):
                continue
            return
        display.show_grade_breakdown(breakdown)
        display.press_enter_to_continue()
        return


class TestTaker:
    """Runs one test attempt in the terminal."""

    __test__ = False

    def __init__(self, api: ApiClient):
        self.api = api
        self.proctor = ProctoringMonitor(
            camera=DeviceCameraAccess(consent=self._camera_consent),
            fullscreen=TerminalFullscreen(display.console),
        )
        self.runner = CodeRunner(CodeExecutionClient(api))
        self.controller = SessionController(
            api,
            proctor=self.proctor,
            on_timer_warning=display.show_timer_warning,
            on_auto_submit=self._on_auto_submit,
        )
        self.views: Dict[str, QuestionView] = {}
        self.index = 0

    @staticmethod
    def _camera_consent() -> bool:
        display.show_info("This test is proctored and needs access to your camera.")
        return display.confirm("Allow camera access?")

    def _on_auto_submit(self, outcome: SubmitOutcome) -> None:
        display.console.print()
        if outcome.status is SubmitStatus.COMPLETED:
            display.show_info("Time is up. Your test was submitted automatically. Press Enter to continue.")
        elif outcome.status is SubmitStatus.RETRY:
            display.show_error("Time is up, but the automatic submission failed. Press Enter to retry.")

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------

    def run(self, test_id: str) -> None:
        try:
            while True:
                with display.console.status("Loading test..."):
                    outcome = self.controller.start(test_id)
                if outcome.status is StartStatus.STARTED:
                    break
                display.show_error(outcome.message or "The test could not be started.")
                if outcome.status is StartStatus.FAILED and display.confirm("Try loading the test again?"):
                    continue
                return

            display.show_test_intro(self.controller.test)
            self._question_loop()
        finally:
            self.controller.close()

        session = self.controller.session
        if session.state is SessionState.COMPLETED:
            display.show_success(f"Test submitted. Submission id: {session.submission_id}")
            show_results(self.api, session.submission_id)
        elif session.state is SessionState.FAILED:
            display.show_error(session.error or "The submission was rejected.")
            display.press_enter_to_continue()

    # ------------------------------------------------------------------
    # Question loop
    # ------------------------------------------------------------------

    def _view(self) -> QuestionView:
        question = self.controller.questions[self.index]
        view = self.views.get(question.id)
        if view is None:
            view = view_for(question, self.controller, self.runner)
            self.views[question.id] = view
        else:
            self.runner.focus(question.id)
        return view

    def _question_loop(self) -> None:
        controller = self.controller
        total = len(controller.questions)

        while True:
            state = controller.state
            if state is SessionState.SUBMITTING:
                time.sleep(0.2)
                continue
            if state is not SessionState.IN_PROGRESS:
                return

            if controller.time_is_up():
                if not self._after_deadline():
                    return
                continue

            view = self._view()
            display.console.print()
            display.show_navigator(list(controller.questions), [q.id for q in controller.questions
                                                                if controller.get_response(q.id)], self.index)
            display.show_proctoring_status(self.proctor)
            display.show_question(self.index + 1, total, view, controller.time_remaining())

            try:
                raw = display.console.input(self._prompt(view)).strip()
            except KeyboardInterrupt:
                self.proctor.record(MonitoringEventType.KEYBOARD_SHORTCUT, key="Ctrl+C")
                display.console.print()
                if display.confirm("Leave the test? Your answers will be lost"):
                    return
                continue
            except EOFError:
                return

            if not self._handle(view, raw):
                return

    def _prompt(self, view: QuestionView) -> str:
        parts = []
        if isinstance(view, ChoiceView):
            parts.append("1-9 toggle option")
        elif isinstance(view, FreeTextView):
            parts.append("[e]dit answer")
        elif isinstance(view, CodeView):
            parts += ["[e]dit code", "[r]un", "[l]anguage"]
        parts += ["[n]ext", "[p]rev", "[g]oto N", "[c]lear", "[s]ubmit", "[q]uit"]
        return f"  [bold]{', '.join(parts)}: [/bold]"

    def _handle(self, view: QuestionView, raw: str) -> bool:
        """Apply one command. Returns False to leave the loop."""
        command, _, arg = raw.partition(" ")
        command = command.lower()
        total = len(self.controller.questions)

        if command.isdigit() and isinstance(view, ChoiceView):
            try:
                accepted = view.toggle(view.option_at(int(command)))
            except ValueError as e:
                display.show_warning(str(e))
                return True
            if not accepted:
                display.show_warning("Answers can no longer be changed.")
        elif command in ("n", "next", ""):
            self.index = min(self.index + 1, total - 1)
        elif command in ("p", "prev"):
            self.index = max(self.index - 1, 0)
        elif command in ("g", "goto"):
            if arg.isdigit() and 1 <= int(arg) <= total:
                self.index = int(arg) - 1
            else:
                display.show_warning(f"Enter a question number between 1 and {total}.")
        elif command in ("c", "clear"):
            view.clear()
        elif command in ("e", "edit") and isinstance(view, FreeTextView):
            self._edit_text(view)
        elif command in ("e", "edit") and isinstance(view, CodeView):
            self._edit_code(view)
        elif command in ("r", "run") and isinstance(view, CodeView):
            self._run_code(view)
        elif command in ("l", "language") and isinstance(view, CodeView):
            language = arg or display.prompt_text(f"Language ({', '.join(config.STARTER_TEMPLATES)})")
            if language.lower() not in config.STARTER_TEMPLATES:
                display.show_warning(f"Unsupported language: {language}")
            else:
                view.set_language(language)
        elif command in ("s", "submit"):
            self._submit()
        elif command in ("q", "quit"):
            return not display.confirm("Leave the test? Your answers will be lost")
        else:
            display.show_warning(f"Unknown command: {raw}")
        return True

    def _edit_text(self, view: FreeTextView) -> None:
        text = display.prompt_multiline()
        if not text:
            display.show_info("Answer unchanged. Use [c]lear to remove it.")
            return
        if not view.set_text(text):
            display.show_warning("Answers can no longer be changed.")

    def _edit_code(self, view: CodeView) -> None:
        display.show_info("Enter your full program.")
        source = display.prompt_multiline()
        if not source:
            display.show_info("Code unchanged.")
            return
        if not view.set_source(source):
            display.show_warning("Answers can no longer be changed.")

    def _run_code(self, view: CodeView) -> None:
        done = threading.Event()
        holder = {}

        def on_done(report: ExecutionReport) -> None:
            holder["report"] = report
            done.set()

        request = view.run(on_done)
        if request is RunRequest.BUSY:
            display.show_warning("A run is already in progress.")
            return
        with display.console.status("Running your code..."):
            done.wait(CODE_RUN_WAIT_SECONDS)
        if "report" not in holder:
            display.show_warning("Still running. Results will appear when you return to this question.")

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _submit(self) -> None:
        outcome = self.controller.submit()
        if outcome.status is SubmitStatus.BLOCKED:
            display.show_warning(outcome.message)
            if not display.confirm("Submit anyway?"):
                return
            outcome = self.controller.submit(acknowledge_incomplete=True)
        self._report_submit(outcome)

    def _report_submit(self, outcome: SubmitOutcome) -> None:
        if outcome.status is SubmitStatus.COMPLETED:
            display.show_success("Submitted.")
        elif outcome.status is SubmitStatus.RETRY:
            display.show_error(outcome.message)
            display.show_info("Choose [s]ubmit again to retry. The timer is still running.")
        elif outcome.status is SubmitStatus.IN_FLIGHT:
            display.show_info(outcome.message)
        elif outcome.status is SubmitStatus.FAILED:
            display.show_error(outcome.message)
        else:
            display.show_warning(outcome.message)

    def _after_deadline(self) -> bool:
        """Time is up but the session is still open: the auto-submit failed."""
        display.show_error(self.controller.error or "Time is up and the submission did not go through.")
        if display.confirm("Retry the submission now?"):
            self._report_submit(self.controller.submit())
            return True
        return not display.confirm("Leave without submitting? Your answers will be lost")


def main_menu_loop(api: ApiClient) -> None:
    """Main menu loop."""
    while True:
        display.clear_screen()
        display.show_banner()

        options = [
            "Take a test",
            "View results",
            "Exit",
        ]

        choice = display.show_menu("Main Menu", options)

        try:
            if choice == 1:
                test_id = display.prompt_text("Test ID")
                if not test_id:
                    display.show_error("Test ID cannot be empty.")
                    display.press_enter_to_continue()
                    continue
                TestTaker(api).run(test_id)

            elif choice == 2:
                submission_id = display.prompt_text("Submission ID")
                if submission_id:
                    show_results(api, submission_id)

            elif choice == 3:
                display.show_info("Goodbye!")
                break

        except KeyboardInterrupt:
            display.console.print("\n")
            display.show_info("Returning to main menu...")
            continue
        except Exception as e:
            logger.exception("Unhandled error in menu action")
            display.show_error(f"An error occurred: {e}")
            display.press_enter_to_continue()


def main() -> None:
    """Entry point."""
    configure_logging()
    display.clear_screen()
    display.show_banner()

    token: Optional[str] = config.API_TOKEN or None
    if not token:
        display.show_warning("ASSESS_API_TOKEN is not set.")
        token = display.prompt_text("Paste your access token") or None
        if not token:
            display.show_error("An access token is required to take tests.")
            sys.exit(1)

    api = ApiClient(token_provider=lambda: token)
    try:
        main_menu_loop(api)
    except KeyboardInterrupt:
        display.console.print("\n")
        display.show_info("Goodbye!")
    finally:
        api.close()


if __name__ == "__main__":
    main()
