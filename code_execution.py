"""Run a code answer against its visible sample cases on the execution service.

Running code is informational: it never writes a response and never
changes session state. Failures come back as an ExecutionReport, not as
exceptions.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from api_client import ApiClient, ApiError
from models import CodeQuestion

logger = logging.getLogger(__name__)

EMPTY_CODE_MESSAGE = "Please write some code before executing."


class CaseStatus(str, Enum):
    PASSED = "PASSED"
    FAILED = "FAILED"
    ERROR = "ERROR"


class ExecutionOutcome(str, Enum):
    COMPLETED = "completed"   # the service ran the code (cases may still fail)
    REJECTED = "rejected"     # local validation stopped the call
    FAILED = "failed"         # network or service error


class RunRequest(str, Enum):
    STARTED = "started"
    BUSY = "busy"
    REJECTED = "rejected"


@dataclass(frozen=True)
class CaseResult:
    input: str
    expected_output: str
    status: CaseStatus
    actual_output: str = ""
    execution_time_ms: Optional[float] = None
    error_message: Optional[str] = None


@dataclass(frozen=True)
class ExecutionReport:
    outcome: ExecutionOutcome
    results: Tuple[CaseResult, ...] = ()
    passed: int = 0
    total: int = 0
    message: Optional[str] = None

    @property
    def all_passed(self) -> bool:
        return self.outcome is ExecutionOutcome.COMPLETED and self.total > 0 and self.passed == self.total


def _parse_status(raw: Any) -> CaseStatus:
    try:
        return CaseStatus(str(raw).upper())
    except ValueError:
        return CaseStatus.ERROR


def _number(raw: Any, cast: Callable[[Any], Any]) -> Any:
    """``cast(raw)``, or None when the service sent something non-numeric."""
    if raw is None:
        return None
    try:
        return cast(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric value from the execution service: %r", raw)
        return None


def _parse_case(raw: Dict[str, Any]) -> CaseResult:
    time_ms = raw.get("execution_time", raw.get("executionTime"))
    return CaseResult(
        input=str(raw.get("input", "")),
        expected_output=str(raw.get("expected_output", raw.get("expectedOutput", ""))),
        status=_parse_status(raw.get("status")),
        actual_output=str(raw.get("actual_output", raw.get("actualOutput")) or ""),
        execution_time_ms=_number(time_ms, float),
        error_message=raw.get("error_message") or raw.get("errorMessage"),
    )


def parse_execution_report(data: Any, question: CodeQuestion) -> ExecutionReport:
    """Build a report from the service reply.

    A compilation or runtime error with no per-case results is spread over
    the question's sample cases as ERROR rows so the table still renders.
    """
    if not isinstance(data, dict):
        return ExecutionReport(ExecutionOutcome.FAILED, message="Unexpected response from the execution service.")

    raw_cases = data.get("execution_results") or data.get("results") or []
    if not isinstance(raw_cases, list):
        raw_cases = []
    results = tuple(_parse_case(c) for c in raw_cases if isinstance(c, dict))

    error = data.get("compilationError") or data.get("executionError") or data.get("error")
    if not results and error:
        results = tuple(
            CaseResult(input=c.input, expected_output=c.expected_output,
                       status=CaseStatus.ERROR, error_message=str(error))
            for c in question.sample_cases
        )

    counted_passed = sum(1 for r in results if r.status is CaseStatus.PASSED)
    passed = _number(data.get("testcases_passed", data.get("passedTestCases")), int)
    total = _number(data.get("total_testcases", data.get("totalTestCases")), int)
    return ExecutionReport(
        outcome=ExecutionOutcome.COMPLETED,
        results=results,
        passed=passed if passed is not None else counted_passed,
        total=total if total is not None else len(results),
        message=str(error) if error else None,
    )


class CodeExecutionClient:
    """Fire-and-await wrapper around the external code-run service."""

    def __init__(self, api: ApiClient):
        self.api = api

    def execute(self, question: CodeQuestion, code: str, language: Optional[str] = None) -> ExecutionReport:
        if not code or not code.strip():
            return ExecutionReport(ExecutionOutcome.REJECTED, message=EMPTY_CODE_MESSAGE)

        body = {
            "questionId": question.id,
            "code": code,
            "language": language or question.language,
            "testCases": [
                {"input": c.input, "expected_output": c.expected_output}
                for c in question.sample_cases
            ],
        }
        try:
            data = self.api.execute_code(body)
        except ApiError as e:
            logger.warning("Code execution for question %s failed: %s", question.id, e)
            return ExecutionReport(ExecutionOutcome.FAILED, message=f"Error executing code: {e}")
        return parse_execution_report(data, question)


def _spawn_thread(target: Callable[[], None]) -> None:
    threading.Thread(target=target, name="code-run", daemon=True).start()


class CodeRunner:
    """Keeps at most one execution in flight and drops stale results.

    A second run while one is pending is refused (BUSY), not queued. When
    the learner moves to another question, :meth:`focus` abandons the
    pending run: its report is discarded when it arrives instead of being
    shown against the wrong question.
    """

    def __init__(self, client: CodeExecutionClient, spawn: Callable[[Callable[[], None]], None] = _spawn_thread):
        self.client = client
        self._spawn = spawn
        self._lock = threading.Lock()
        self._generation = 0
        self._running_for: Optional[str] = None
        self._focused: Optional[str] = None
        self._reports: Dict[str, ExecutionReport] = {}

    def focus(self, question_id: Optional[str]) -> None:
        with self._lock:
            if question_id == self._focused:
                return
            self._focused = question_id
            if self._running_for is not None and self._running_for != question_id:
                logger.debug("Abandoning code run for question %s", self._running_for)
                self._generation += 1
                self._running_for = None

    def abandon(self) -> None:
        with self._lock:
            self._generation += 1
            self._running_for = None

    def is_running(self, question_id: Optional[str] = None) -> bool:
        with self._lock:
            if question_id is None:
                return self._running_for is not None
            return self._running_for == question_id

    def last_report(self, question_id: str) -> Optional[ExecutionReport]:
        with self._lock:
            return self._reports.get(question_id)

    def run(
        self,
        question: CodeQuestion,
        code: str,
        on_done: Optional[Callable[[ExecutionReport], None]] = None,
        language: Optional[str] = None,
    ) -> RunRequest:
        if not code or not code.strip():
            report = ExecutionReport(ExecutionOutcome.REJECTED, message=EMPTY_CODE_MESSAGE)
            with self._lock:
                self._reports[question.id] = report
            if on_done:
                on_done(report)
            return RunRequest.REJECTED

        with self._lock:
            if self._running_for is not None:
                return RunRequest.BUSY
            self._running_for = question.id
            self._focused = question.id
            self._reports.pop(question.id, None)
            generation = self._generation

        def work() -> None:
            try:
                report = self.client.execute(question, code, language)
            except Exception as e:
                logger.exception("Unexpected error while running code for question %s", question.id)
                report = ExecutionReport(ExecutionOutcome.FAILED, message=f"Error executing code: {e}")
            with self._lock:
                if generation != self._generation:
                    logger.debug("Discarding stale execution result for question %s", question.id)
                    return
                self._running_for = None
                self._reports[question.id] = report
            if on_done:
                on_done(report)

        self._spawn(work)
        return RunRequest.STARTED
