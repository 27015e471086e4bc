import copy
import threading

import httpx
import pytest

from conftest import SAMPLE_TEST, submitted_body
from models import CodeAnswer, SessionState
from proctoring import CallbackCameraAccess, FullscreenMode, ProctoringMonitor
from session import StartStatus, SubmitStatus

SUBMIT_PATH = "/student/tests/t1/submit"


class TestStart:
    def test_start_enters_in_progress(self, make_controller, timers):
        controller = make_controller()
        outcome = controller.start("t1")

        assert outcome.status is StartStatus.STARTED
        assert controller.state is SessionState.IN_PROGRESS
        assert [q.id for q in controller.questions] == ["q1", "q2", "q3"]
        assert controller.time_remaining() == 120
        assert timers.created[0].is_running()

    def test_incomplete_test_fails_to_load(self, make_controller, backend):
        backend.on("GET", "/student/tests/t1", (200, {"data": {"id": "t1", "durationInMinutes": 2, "questions": []}}))
        controller = make_controller()
        outcome = controller.start("t1")

        assert outcome.status is StartStatus.FAILED
        assert controller.state is SessionState.FAILED
        assert "no questions" in outcome.message

    @pytest.mark.parametrize("field, value", [
        ("durationInMinutes", "two"),
        ("passingMarks", "n/a"),
        ("questions", {"a": 1}),
        ("order", "first"),
        ("options", [1, 2]),
    ])
    def test_malformed_test_fails_and_can_be_retried(self, make_controller, backend, field, value):
        body = copy.deepcopy(SAMPLE_TEST)
        if field in ("order", "options"):
            body["questions"][0][field] = value
        else:
            body[field] = value
        backend.on("GET", "/student/tests/t1", (200, body), (200, SAMPLE_TEST))
        controller = make_controller()

        outcome = controller.start("t1")
        assert outcome.status is StartStatus.FAILED
        assert controller.state is SessionState.FAILED
        assert outcome.message.startswith("This test could not be loaded")

        assert controller.start("t1").status is StartStatus.STARTED
        assert controller.state is SessionState.IN_PROGRESS

    def test_network_failure_then_retry_starts_fresh_session(self, make_controller, backend):
        backend.on("GET", "/student/tests/t1", (503, None), (200, SAMPLE_TEST))
        controller = make_controller()

        assert controller.start("t1").status is StartStatus.FAILED
        failed_session = controller.session
        assert controller.start("t1").status is StartStatus.STARTED
        assert controller.session is not failed_session
        assert controller.state is SessionState.IN_PROGRESS

    def test_camera_denial_blocks_before_loading(self, make_controller, backend):
        proctor = ProctoringMonitor(camera=CallbackCameraAccess(lambda: False), require_camera=True)
        controller = make_controller(proctor=proctor)
        outcome = controller.start("t1")

        assert outcome.status is StartStatus.BLOCKED
        assert "camera" in outcome.message.lower()
        assert controller.state is SessionState.LOADING
        assert backend.calls("GET", "/student/tests/t1") == []

    def test_fullscreen_failure_does_not_block(self, make_controller):
        proctor = ProctoringMonitor(camera=CallbackCameraAccess(lambda: True), fullscreen=FullscreenMode())
        controller = make_controller(proctor=proctor)
        assert controller.start("t1").status is StartStatus.STARTED
        assert not proctor.is_fullscreen

    def test_running_session_is_not_replaced(self, make_controller):
        controller = make_controller()
        controller.start("t1")
        assert controller.start("t1").status is StartStatus.ALREADY_RUNNING


class TestRecordResponse:
    def test_dropped_before_start(self, make_controller):
        assert make_controller().record_response("q1", "a") is False

    def test_unknown_question(self, make_controller):
        controller = make_controller()
        controller.start("t1")
        with pytest.raises(KeyError):
            controller.record_response("nope", "a")

    def test_empty_payload_clears(self, make_controller):
        controller = make_controller()
        controller.start("t1")
        controller.record_response("q1", "a")
        controller.record_response("q1", [])

        assert controller.get_response("q1") is None
        assert controller.answered_count() == 0

    def test_same_payload_twice_is_one_response(self, make_controller):
        controller = make_controller()
        controller.start("t1")
        controller.record_response("q1", "b")
        controller.record_response("q1", "b")
        assert controller.store.snapshot()[0].payload == frozenset({"b"})
        assert controller.answered_count() == 1

    def test_dropped_after_completion(self, make_controller):
        controller = make_controller()
        controller.start("t1")
        controller.submit(acknowledge_incomplete=True)
        assert controller.record_response("q1", "a") is False
        assert controller.clear_response("q1") is False


class TestSubmit:
    def test_happy_path(self, make_controller, backend, clock):
        controller = make_controller()
        controller.start("t1")
        controller.record_response("q1", "b")
        controller.record_response("q3", CodeAnswer("a, b = map(int, input().split())\nprint(a + b)", "python"))
        clock.advance(30)

        blocked = controller.submit()
        assert blocked.status is SubmitStatus.BLOCKED
        assert blocked.unanswered == ("q2",)
        assert controller.state is SessionState.IN_PROGRESS
        assert backend.calls("POST", SUBMIT_PATH) == []

        outcome = controller.submit(acknowledge_incomplete=True)
        assert outcome.status is SubmitStatus.COMPLETED
        assert outcome.submission_id == "sub-1"
        assert controller.state is SessionState.COMPLETED
        assert controller.session.submission_id == "sub-1"

        body = submitted_body(backend)
        assert [r["questionId"] for r in body["responses"]] == ["q1", "q3"]
        assert body["responses"][0] == {"questionId": "q1", "type": "MCQ", "answer": ["b"]}
        assert body["responses"][1]["language"] == "python"
        assert body["submissionType"] == "MANUAL"
        assert body["totalTimeSpent"] == 30

    def test_complete_answers_submit_without_confirmation(self, make_controller):
        controller = make_controller()
        controller.start("t1")
        controller.record_response("q1", "a")
        controller.record_response("q2", "b")
        controller.record_response("q3", "print(1)")
        assert controller.submit().status is SubmitStatus.COMPLETED

    def test_timeout_auto_submits_empty_payload(self, make_controller, backend, clock, timers):
        states = []
        auto = []
        controller = make_controller(on_state_change=states.append, on_auto_submit=auto.append)
        controller.start("t1")

        clock.advance(120)
        timers.created[0].tick()

        assert states == [SessionState.IN_PROGRESS, SessionState.SUBMITTING, SessionState.COMPLETED]
        assert auto[0].status is SubmitStatus.COMPLETED
        body = submitted_body(backend)
        assert body["responses"] == []
        assert body["submissionType"] == "AUTO_TIME"
        assert body["totalTimeSpent"] == 120

    def test_network_failure_then_manual_retry(self, make_controller, backend, clock):
        backend.on("POST", SUBMIT_PATH, (503, {"message": "unavailable"}), (201, {"submissionId": "sub-9"}))
        controller = make_controller()
        controller.start("t1")
        controller.record_response("q1", "b")
        clock.advance(10)

        first = controller.submit(acknowledge_incomplete=True)
        assert first.status is SubmitStatus.RETRY
        assert "try again" in first.message.lower()
        assert controller.state is SessionState.IN_PROGRESS
        clock.advance(5)
        assert controller.time_remaining() == 105

        second = controller.submit(acknowledge_incomplete=True)
        assert second.status is SubmitStatus.COMPLETED
        assert controller.session.submission_id == "sub-9"
        assert len(backend.calls("POST", SUBMIT_PATH)) == 2

    def test_answers_can_change_between_failed_and_retried_submit(self, make_controller, backend):
        backend.on("POST", SUBMIT_PATH, (500, None), (201, {"submissionId": "sub-2"}))
        controller = make_controller()
        controller.start("t1")
        controller.record_response("q1", "a")
        controller.submit(acknowledge_incomplete=True)

        assert controller.record_response("q1", "b") is True
        controller.submit(acknowledge_incomplete=True)
        assert submitted_body(backend)["responses"][0]["answer"] == ["b"]

    def test_duplicate_submission_is_terminal(self, make_controller, backend, timers):
        backend.on("POST", SUBMIT_PATH, (409, {"message": "Submission already exists"}))
        controller = make_controller()
        controller.start("t1")

        outcome = controller.submit(acknowledge_incomplete=True)
        assert outcome.status is SubmitStatus.FAILED
        assert controller.state is SessionState.FAILED
        assert not timers.created[0].is_running()

        assert controller.submit(acknowledge_incomplete=True).status is SubmitStatus.NOT_ALLOWED
        assert len(backend.calls("POST", SUBMIT_PATH)) == 1

    def test_submit_while_submitting_sends_once(self, make_controller, backend):
        controller = make_controller()
        nested = []

        def reply(request):
            nested.append(controller.submit(acknowledge_incomplete=True))
            nested.append(controller.record_response("q1", "a"))
            return httpx.Response(201, json={"submissionId": "sub-1"})

        backend.on("POST", SUBMIT_PATH, reply)
        controller.start("t1")
        controller.submit(acknowledge_incomplete=True)

        assert nested[0].status is SubmitStatus.IN_FLIGHT
        assert nested[1] is False
        assert len(backend.calls("POST", SUBMIT_PATH)) == 1
        assert submitted_body(backend)["responses"] == []

    def test_concurrent_submits_send_once(self, make_controller, backend):
        in_flight = threading.Event()
        release = threading.Event()

        def reply(request):
            in_flight.set()
            release.wait(5)
            return httpx.Response(201, json={"submissionId": "sub-1"})

        backend.on("POST", SUBMIT_PATH, reply)
        controller = make_controller()
        controller.start("t1")

        worker = threading.Thread(target=controller.submit, kwargs={"acknowledge_incomplete": True})
        worker.start()
        assert in_flight.wait(5)

        outcomes = [controller.submit(acknowledge_incomplete=True) for _ in range(5)]
        release.set()
        worker.join(5)

        assert {o.status for o in outcomes} == {SubmitStatus.IN_FLIGHT}
        assert len(backend.calls("POST", SUBMIT_PATH)) == 1
        assert controller.state is SessionState.COMPLETED

    def test_monitoring_events_attached(self, make_controller, backend):
        proctor = ProctoringMonitor(camera=CallbackCameraAccess(lambda: True))
        controller = make_controller(proctor=proctor)
        controller.start("t1")
        proctor.tab_switched()

        controller.submit(acknowledge_incomplete=True)
        event_types = [e["eventType"] for e in submitted_body(backend)["monitoringEvents"]]
        assert "TAB_SWITCH" in event_types
        assert proctor.tab_switched() is None


class TestExpiry:
    def test_failed_auto_submit_is_retried(self, make_controller, backend, clock, timers):
        backend.on("POST", SUBMIT_PATH, (503, None), (201, {"submissionId": "sub-3"}))
        sleeps = []
        controller = make_controller(sleep=sleeps.append, auto_submit_retries=3, auto_submit_retry_seconds=5)
        controller.start("t1")

        clock.advance(121)
        timers.created[0].tick()

        assert controller.state is SessionState.COMPLETED
        assert sleeps == [5]
        assert len(backend.calls("POST", SUBMIT_PATH)) == 2

    def test_expiry_is_sticky_after_retries_run_out(self, make_controller, backend, clock, timers):
        backend.on("POST", SUBMIT_PATH, (503, None))
        sleeps = []
        auto = []
        controller = make_controller(
            sleep=sleeps.append, auto_submit_retries=3, auto_submit_retry_seconds=5, on_auto_submit=auto.append,
        )
        controller.start("t1")
        clock.advance(120)
        timers.created[0].tick()

        assert sleeps == [5, 5, 5]
        assert len(backend.calls("POST", SUBMIT_PATH)) == 4
        assert auto[0].status is SubmitStatus.RETRY
        assert controller.state is SessionState.IN_PROGRESS
        assert controller.time_is_up()
        assert controller.record_response("q1", "a") is False

        # Manual nudge skips the completeness gate and keeps the AUTO_TIME type.
        backend.on("POST", SUBMIT_PATH, (201, {"submissionId": "sub-4"}))
        outcome = controller.submit()
        assert outcome.status is SubmitStatus.COMPLETED
        assert submitted_body(backend)["submissionType"] == "AUTO_TIME"

    def test_expiry_never_refires(self, make_controller, backend, clock, timers):
        controller = make_controller()
        controller.start("t1")
        clock.advance(200)
        timers.created[0].tick()
        timers.created[0].tick()
        assert len(backend.calls("POST", SUBMIT_PATH)) == 1

    def test_timer_warning_is_forwarded(self, make_controller, backend, clock, timers):
        warnings = []
        controller = make_controller(on_timer_warning=warnings.append)
        controller.start("t1")
        clock.advance(61)
        timers.created[0].tick()
        assert warnings == [60]
