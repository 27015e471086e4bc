"""Session controller: the lifecycle of one timed test attempt.

States::

    LOADING -> IN_PROGRESS -> SUBMITTING -> COMPLETED
       |                         |  ^
       v                         v  | (recoverable failure)
     FAILED                  IN_PROGRESS / FAILED

The controller is the only place that changes state. Timer expiry and the
learner's submit action both call :meth:`SessionController.submit`; only
the manual path is subject to the completeness warning.
"""

import logging
import random
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

import config
from api_client import ApiClient, ApiError
from autosave import Autosaver
from models import (
    Question,
    Response,
    Session,
    SessionState,
    SubmissionPayload,
    SubmissionTrigger,
    TestDefinition,
    TestDefinitionError,
    adapt_payload,
    parse_test_definition,
)
from proctoring import ProctoringMonitor
from responses import ResponseStore
from timer import Timer

logger = logging.getLogger(__name__)

TimerFactory = Callable[[int, Callable[[], None], Callable[[int], None]], Timer]


class StartStatus(str, Enum):
    STARTED = "started"
    BLOCKED = "blocked"          # a permission was refused; nothing was loaded
    FAILED = "failed"            # the test could not be loaded
    ALREADY_RUNNING = "already_running"


class SubmitStatus(str, Enum):
    COMPLETED = "completed"
    IN_FLIGHT = "in_flight"      # a submission is already being sent
    BLOCKED = "blocked"          # manual submit with unanswered questions
    RETRY = "retry"              # recoverable failure, back to IN_PROGRESS
    FAILED = "failed"            # terminal failure, no retry offered
    NOT_ALLOWED = "not_allowed"  # session is not in progress


@dataclass(frozen=True)
class StartOutcome:
    status: StartStatus
    message: Optional[str] = None


@dataclass(frozen=True)
class SubmitOutcome:
    status: SubmitStatus
    message: Optional[str] = None
    submission_id: Optional[str] = None
    unanswered: Tuple[str, ...] = ()


def _default_timer(total_seconds: int, on_expire: Callable[[], None], on_warning: Callable[[int], None]) -> Timer:
    return Timer(total_seconds, on_expire=on_expire, on_warning=on_warning)


class SessionController:
    def __init__(
        self,
        api: ApiClient,
        proctor: Optional[ProctoringMonitor] = None,
        timer_factory: TimerFactory = _default_timer,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
        auto_submit_retries: int = config.AUTO_SUBMIT_MAX_RETRIES,
        auto_submit_retry_seconds: float = config.AUTO_SUBMIT_RETRY_SECONDS,
        autosave_interval: float = config.AUTOSAVE_INTERVAL_SECONDS,
        on_state_change: Optional[Callable[[SessionState], None]] = None,
        on_timer_warning: Optional[Callable[[int], None]] = None,
        on_auto_submit: Optional[Callable[[SubmitOutcome], None]] = None,
    ):
        self.api = api
        self.proctor = proctor
        self.store = ResponseStore()
        self.session: Optional[Session] = None
        self.test: Optional[TestDefinition] = None
        self.questions: Tuple[Question, ...] = ()
        self.timer: Optional[Timer] = None
        self.autosaver: Optional[Autosaver] = None
        self.payload: Optional[SubmissionPayload] = None
        self._timer_factory = timer_factory
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._auto_submit_retries = auto_submit_retries
        self._auto_submit_retry_seconds = auto_submit_retry_seconds
        self._autosave_interval = autosave_interval
        self._on_state_change = on_state_change
        self._on_timer_warning = on_timer_warning
        self._on_auto_submit = on_auto_submit
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self.session.state if self.session else SessionState.LOADING

    @property
    def error(self) -> Optional[str]:
        with self._lock:
            return self.session.error if self.session else None

    def _set_state(self, state: SessionState, error: Optional[str] = None) -> None:
        with self._lock:
            previous = self.session.state
            self.session.state = state
            self.session.error = error
        if previous is not state:
            logger.info("Session %s: %s -> %s", self.session.test_id, previous.value, state.value)
            if self._on_state_change:
                self._on_state_change(state)

    def time_is_up(self) -> bool:
        return self.timer is not None and self.timer.is_time_up()

    def accepting_writes(self) -> bool:
        """Writes are taken only while in progress and before the deadline."""
        with self._lock:
            return self.state is SessionState.IN_PROGRESS and not self.time_is_up()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, test_id: str) -> StartOutcome:
        """Load a test and begin a fresh session.

        A failed or finished session is replaced; a running one is not.
        """
        with self._lock:
            if self.session and self.session.state in (SessionState.IN_PROGRESS, SessionState.SUBMITTING):
                return StartOutcome(StartStatus.ALREADY_RUNNING, "A test is already in progress.")
            self._shutdown()
            self.session = Session(test_id=str(test_id))
            self.test = None
            self.questions = ()
            self.timer = None
            self.autosaver = None
            self.payload = None
            self.store.reset()

        if self.proctor is not None:
            self.proctor.reset()
            denial = self.proctor.request_camera()
            if denial:
                logger.warning("Start of test %s blocked: %s", test_id, denial)
                return StartOutcome(StartStatus.BLOCKED, denial)

        try:
            test = parse_test_definition(self.api.get_test(str(test_id)))
        except TestDefinitionError as e:
            logger.error("Test %s is incomplete: %s", test_id, e)
            self._set_state(SessionState.FAILED, f"This test could not be loaded: {e}")
            self._shutdown()
            return StartOutcome(StartStatus.FAILED, self.error)
        except ApiError as e:
            logger.error("Loading test %s failed: %s", test_id, e)
            self._set_state(SessionState.FAILED, f"Failed to load test: {e}")
            self._shutdown()
            return StartOutcome(StartStatus.FAILED, self.error)

        questions = list(test.questions)
        if test.shuffle_questions:
            self._rng.shuffle(questions)

        with self._lock:
            self.test = test
            self.questions = tuple(questions)
            self.session.remaining_seconds = test.duration_seconds
            # Registered once for the whole session.
            self.timer = self._timer_factory(test.duration_seconds, self._on_timer_expired, self._timer_warning)

        if self.proctor is not None:
            self.proctor.request_fullscreen()

        self._set_state(SessionState.IN_PROGRESS)
        if self._autosave_interval > 0:
            self.autosaver = Autosaver(
                self.api, test.id, self.store.snapshot, self._autosave_interval,
                should_save=self.accepting_writes,
            )
            self.autosaver.start()
        self.timer.start()
        return StartOutcome(StartStatus.STARTED)

    def close(self) -> None:
        """Abandon the session (navigation away). In-memory answers are lost."""
        self._shutdown()

    def _shutdown(self) -> None:
        if self.timer is not None:
            if self.session is not None:
                self.session.remaining_seconds = self.timer.get_remaining()
            self.timer.stop()
        if self.autosaver is not None:
            self.autosaver.stop()
        if self.proctor is not None:
            self.proctor.stop()

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    def question(self, question_id: str) -> Question:
        question = self.test.question(question_id) if self.test else None
        if question is None:
            raise KeyError(f"Unknown question: {question_id}")
        return question

    def record_response(self, question_id: str, payload: Any) -> bool:
        """Store the learner's answer. Returns False if the write was dropped.

        Writes outside IN_PROGRESS, or after the deadline, are dropped
        silently. An empty payload clears the response.
        """
        with self._lock:
            if not self.accepting_writes():
                logger.debug("Dropped write for question %s in state %s", question_id, self.state.value)
                return False
            question = self.question(question_id)
            adapted = adapt_payload(question, payload)
            if adapted is None:
                self.store.clear(question_id)
            else:
                self.store.upsert(question_id, question.kind, adapted)
            return True

    def clear_response(self, question_id: str) -> bool:
        with self._lock:
            if not self.accepting_writes():
                return False
            self.question(question_id)
            self.store.clear(question_id)
            return True

    def get_response(self, question_id: str) -> Optional[Response]:
        return self.store.get(question_id)

    def answered_count(self) -> int:
        return len(self.store)

    def unanswered_ids(self) -> List[str]:
        return [q.id for q in self.questions if q.id not in self.store]

    def time_remaining(self) -> int:
        if self.timer is not None:
            remaining = self.timer.get_remaining()
        elif self.test is not None:
            remaining = self.test.duration_seconds
        else:
            remaining = 0
        if self.session is not None:
            self.session.remaining_seconds = remaining
        return remaining

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(
        self,
        trigger: SubmissionTrigger = SubmissionTrigger.MANUAL,
        acknowledge_incomplete: bool = False,
    ) -> SubmitOutcome:
        """Submit the current responses. Safe to call repeatedly.

        While a submission is in flight further calls return IN_FLIGHT
        without touching the network.
        """
        with self._lock:
            state = self.state
            if state is SessionState.SUBMITTING:
                return SubmitOutcome(SubmitStatus.IN_FLIGHT, "Your test is being submitted.")
            if state is not SessionState.IN_PROGRESS:
                return SubmitOutcome(SubmitStatus.NOT_ALLOWED, f"Cannot submit while the test is {state.value}.")

            if self.time_is_up():
                trigger = SubmissionTrigger.AUTO_TIME
            elif trigger is SubmissionTrigger.MANUAL and not acknowledge_incomplete:
                unanswered = tuple(self.unanswered_ids())
                if unanswered:
                    return SubmitOutcome(
                        SubmitStatus.BLOCKED,
                        f"You have {len(unanswered)} unanswered question(s). Submit anyway?",
                        unanswered=unanswered,
                    )

            # Writes are held off by the lock, so this snapshot follows every
            # record_response issued before the submit.
            self.payload = self._build_payload(trigger)
            payload = self.payload
            self._set_state(SessionState.SUBMITTING)

        return self._send(payload)

    def _build_payload(self, trigger: SubmissionTrigger) -> SubmissionPayload:
        return SubmissionPayload(
            test_id=self.test.id,
            responses=self.store.snapshot(),
            submission_type=trigger,
            total_time_spent=self.timer.get_elapsed() if self.timer else 0,
            monitoring_events=self.proctor.event_payload() if self.proctor else (),
        )

    def _send(self, payload: SubmissionPayload) -> SubmitOutcome:
        logger.info(
            "Submitting %d response(s) for test %s (%s)",
            len(payload.responses), payload.test_id, payload.submission_type.value,
        )
        try:
            submission_id = self.api.submit_test(payload.test_id, payload.to_json())
        except ApiError as e:
            if e.recoverable:
                logger.warning("Submission failed, learner may retry: %s", e)
                self._set_state(SessionState.IN_PROGRESS, f"Failed to submit test: {e}")
                return SubmitOutcome(SubmitStatus.RETRY, f"Failed to submit test: {e} Please try again.")
            logger.error("Submission rejected: %s", e)
            self._set_state(SessionState.FAILED, f"Submission rejected: {e}")
            self._shutdown()
            return SubmitOutcome(SubmitStatus.FAILED, f"Submission rejected: {e}")
        except Exception as e:
            logger.exception("Unexpected error while submitting")
            self._set_state(SessionState.IN_PROGRESS, f"Failed to submit test: {e}")
            return SubmitOutcome(SubmitStatus.RETRY, f"Failed to submit test: {e} Please try again.")

        with self._lock:
            self.session.submission_id = submission_id
        self._set_state(SessionState.COMPLETED)
        self._shutdown()
        return SubmitOutcome(SubmitStatus.COMPLETED, "Test submitted.", submission_id=submission_id)

    # ------------------------------------------------------------------
    # Timer callbacks (run on the timer thread)
    # ------------------------------------------------------------------

    def _timer_warning(self, seconds_left: int) -> None:
        if self._on_timer_warning:
            self._on_timer_warning(seconds_left)

    def _on_timer_expired(self) -> None:
        logger.info("Time is up; submitting automatically")
        outcome = self.submit(SubmissionTrigger.AUTO_TIME)
        retries = 0
        while True:
            if outcome.status is SubmitStatus.IN_FLIGHT:
                # A manual submit is still sending; see how it ends.
                self._sleep(self._auto_submit_retry_seconds)
            elif outcome.status is SubmitStatus.RETRY and retries < self._auto_submit_retries:
                retries += 1
                logger.info("Retrying automatic submission (%d/%d)", retries, self._auto_submit_retries)
                self._sleep(self._auto_submit_retry_seconds)
            else:
                break
            outcome = self.submit(SubmissionTrigger.AUTO_TIME)

        if outcome.status is SubmitStatus.RETRY:
            logger.error("Automatic submission failed after %d retries", retries)
        if self._on_auto_submit:
            self._on_auto_submit(outcome)
