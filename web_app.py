#!/usr/bin/env python3
"""Timed Assessment: Streamlit web application."""

import threading
from typing import Dict, Optional

import streamlit as st

import config
from api_client import ApiClient, ApiError
from code_execution import CaseStatus, CodeExecutionClient, CodeRunner, ExecutionOutcome, ExecutionReport
from logging_config import configure_logging
from models import SessionState
from proctoring import CallbackCameraAccess, ProctoringMonitor
from question_views import ChoiceView, CodeView, FreeTextView, QuestionView, view_for
from results import EvaluationStatus, GradeBreakdown, ResultsError, fetch_grade_breakdown
from session import SessionController, StartStatus, SubmitOutcome, SubmitStatus
from timer import format_seconds


# =====================================================================
# Section 1: Page Config & Initialization
# =====================================================================

st.set_page_config(
    page_title="Timed Assessment",
    page_icon="stopwatch",
    layout="wide",
    initial_sidebar_state="expanded",
)

if "logging_ready" not in st.session_state:
    configure_logging()
    st.session_state.logging_ready = True

if "page" not in st.session_state:
    st.session_state.page = "home"

if "token" not in st.session_state:
    st.session_state.token = config.API_TOKEN


def get_api() -> ApiClient:
    if "api" not in st.session_state:
        st.session_state.api = ApiClient(token_provider=lambda: st.session_state.get("token") or None)
    return st.session_state.api


def get_controller() -> Optional[SessionController]:
    return st.session_state.get("controller")


# =====================================================================
# Section 2: Session Helpers
# =====================================================================

def reset_test_state():
    controller = get_controller()
    if controller is not None:
        controller.close()
    keys_to_remove = [k for k in st.session_state.keys() if k.startswith("test_") or k.startswith("q_")]
    for k in keys_to_remove:
        del st.session_state[k]
    for k in ("controller", "runner", "views", "proctor", "camera_granted"):
        st.session_state.pop(k, None)


def new_controller() -> SessionController:
    api = get_api()
    proctor = ProctoringMonitor(
        camera=CallbackCameraAccess(lambda: bool(st.session_state.get("camera_granted"))),
    )
    controller = SessionController(api, proctor=proctor)
    st.session_state.proctor = proctor
    st.session_state.controller = controller
    st.session_state.runner = CodeRunner(CodeExecutionClient(api))
    st.session_state.views = {}
    st.session_state.test_index = 0
    return controller


def get_view(index: int) -> QuestionView:
    controller = get_controller()
    runner: CodeRunner = st.session_state.runner
    views: Dict[str, QuestionView] = st.session_state.views
    question = controller.questions[index]
    if question.id not in views:
        views[question.id] = view_for(question, controller, runner)
    else:
        runner.focus(question.id)
    return views[question.id]


def show_submit_outcome(outcome: SubmitOutcome) -> None:
    if outcome.status is SubmitStatus.COMPLETED:
        st.success("Test submitted.")
    elif outcome.status is SubmitStatus.RETRY:
        st.error(outcome.message)
    elif outcome.status is SubmitStatus.FAILED:
        st.error(outcome.message)
    elif outcome.message:
        st.info(outcome.message)


# =====================================================================
# Section 3: Sidebar Navigation
# =====================================================================

def render_sidebar():
    with st.sidebar:
        st.title("Timed Assessment")
        st.caption("Learner test client")

        controller = get_controller()
        if controller is not None and controller.state is SessionState.IN_PROGRESS:
            st.info("A test is in progress.")
            proctor: ProctoringMonitor = st.session_state.proctor
            st.caption(f"Camera: {proctor.camera_status}")
            if proctor.violations:
                st.warning(f"Violations recorded: {proctor.violations}")
            return

        if st.button("Take a Test", use_container_width=True, key="nav_home"):
            reset_test_state()
            st.session_state.page = "home"
            st.rerun()
        if st.button("View Results", use_container_width=True, key="nav_results"):
            st.session_state.page = "results"
            st.rerun()

        st.divider()
        st.session_state.token = st.text_input(
            "Access token", value=st.session_state.token or "", type="password", key="nav_token",
        )


# =====================================================================
# Section 4: Start Page
# =====================================================================

def page_home():
    st.header("Start a Test")
    test_id = st.text_input("Test ID", key="test_id_input")
    if st.button("Continue", type="primary", disabled=not test_id):
        reset_test_state()
        st.session_state.test_pending_id = test_id.strip()
        st.session_state.page = "permissions"
        st.rerun()


def page_permissions():
    test_id = st.session_state.get("test_pending_id")
    if not test_id:
        st.session_state.page = "home"
        st.rerun()
        return

    st.header("Camera Check")
    if config.REQUIRE_CAMERA:
        st.write("This test is proctored. Allow camera access in your browser and take a snapshot to continue.")
        snapshot = st.camera_input("Camera", key="test_camera")
        st.session_state.camera_granted = snapshot is not None
    else:
        st.session_state.camera_granted = True

    col1, col2 = st.columns(2)
    with col1:
        start = st.button("Start Test", type="primary", key="test_start")
    with col2:
        if st.button("Back", key="test_back"):
            reset_test_state()
            st.session_state.page = "home"
            st.rerun()

    if not start:
        return

    controller = get_controller() or new_controller()
    with st.spinner("Loading test..."):
        outcome = controller.start(test_id)
    if outcome.status is StartStatus.STARTED:
        st.session_state.page = "test"
        st.rerun()
    elif outcome.status is StartStatus.BLOCKED:
        st.error(outcome.message)
    else:
        st.error(outcome.message)
        st.caption("Press Start Test to try loading it again.")


# =====================================================================
# Section 5: Test Page
# =====================================================================

@st.fragment(run_every=1)
def render_clock():
    controller = get_controller()
    if controller is None:
        return
    if controller.state is not SessionState.IN_PROGRESS or controller.time_is_up():
        # Auto-submit finished or failed on the timer thread.
        if st.session_state.get("test_clock_state") != (controller.state, controller.time_is_up()):
            st.session_state.test_clock_state = (controller.state, controller.time_is_up())
            st.rerun(scope="app")
    remaining = controller.time_remaining()
    label = format_seconds(remaining)
    if remaining <= config.TIMER_CRITICAL_SECONDS:
        st.error(f"Time left: {label}")
    elif remaining <= max(config.TIMER_WARNING_SECONDS):
        st.warning(f"Time left: {label}")
    else:
        st.metric("Time left", label)


def render_navigator():
    controller = get_controller()
    cols = st.columns(min(len(controller.questions), 10))
    for i, q in enumerate(controller.questions):
        answered = controller.get_response(q.id) is not None
        label = f"{i + 1} ✓" if answered else str(i + 1)
        with cols[i % len(cols)]:
            kind = "primary" if i == st.session_state.test_index else "secondary"
            if st.button(label, key=f"test_nav_{q.id}", type=kind, use_container_width=True):
                st.session_state.test_index = i
                st.rerun()


def render_choice(view: ChoiceView):
    question = view.question
    if question.multi_select:
        st.caption("Select all that apply.")
        for option in question.options:
            checked = st.checkbox(option.text, value=option.option_id in view.selected,
                                  key=f"q_{question.id}_{option.option_id}")
            if checked != (option.option_id in view.selected) and not view.toggle(option.option_id):
                st.warning("Answers can no longer be changed.")
        return

    ids = question.option_ids()
    current = next(iter(view.selected), None)
    selected = st.radio(
        "Select your answer:",
        ids,
        index=ids.index(current) if current in ids else None,
        format_func=question.option_text,
        key=f"q_{question.id}",
    )
    if selected is not None and selected != current and not view.select(selected):
        st.warning("Answers can no longer be changed.")


def render_free_text(view: FreeTextView):
    question = view.question
    text = st.text_area("Your answer", value=view.text, height=240, key=f"q_{question.id}")
    if text != view.text and not view.set_text(text):
        st.warning("Answers can no longer be changed.")
    caption = f"{view.word_count} words"
    if question.expected_word_count:
        caption += f" (suggested: {question.expected_word_count})"
    st.caption(caption)


def render_execution_report(report: ExecutionReport):
    if report.outcome is ExecutionOutcome.REJECTED:
        st.warning(report.message)
        return
    if report.outcome is ExecutionOutcome.FAILED:
        st.error(report.message)
        return
    rows = []
    for i, r in enumerate(report.results, 1):
        rows.append({
            "#": i,
            "Input": r.input,
            "Expected": r.expected_output,
            "Actual": r.error_message if r.status is CaseStatus.ERROR else r.actual_output,
            "Time (ms)": r.execution_time_ms,
            "Status": r.status.value,
        })
    st.dataframe(rows, use_container_width=True, hide_index=True)
    if report.all_passed:
        st.success(f"Passed {report.passed}/{report.total} test cases")
    else:
        st.warning(f"Passed {report.passed}/{report.total} test cases")
    if report.message:
        st.error(report.message)


def render_code(view: CodeView):
    question = view.question
    if question.constraints:
        st.caption(f"Constraints: {question.constraints}")
    if question.sample_cases:
        st.table([{"Input": c.input, "Expected output": c.expected_output} for c in question.sample_cases])

    languages = list(config.STARTER_TEMPLATES)
    language = st.selectbox(
        "Language", languages,
        index=languages.index(view.language) if view.language in languages else 0,
        key=f"q_{question.id}_language",
    )
    if language != view.language and view.set_language(language):
        st.session_state.pop(f"q_{question.id}_code", None)
        st.rerun()

    source = st.text_area("Code", value=view.source, height=320, key=f"q_{question.id}_code")
    if source != view.source and not view.set_source(source):
        st.warning("Answers can no longer be changed.")

    if st.button("Run Code", key=f"q_{question.id}_run", disabled=view.is_running):
        done = threading.Event()
        view.run(lambda _report: done.set())
        with st.spinner("Running your code..."):
            done.wait(60)
    if view.report is not None:
        render_execution_report(view.report)


def render_submit(controller: SessionController):
    if st.session_state.get("test_confirm_incomplete"):
        st.warning(st.session_state.test_confirm_incomplete)
        col1, col2 = st.columns(2)
        with col1:
            if st.button("Submit anyway", type="primary", key="test_submit_anyway"):
                st.session_state.test_confirm_incomplete = None
                show_submit_outcome(controller.submit(acknowledge_incomplete=True))
                st.rerun()
        with col2:
            if st.button("Keep working", key="test_keep_working"):
                st.session_state.test_confirm_incomplete = None
                st.rerun()
        return

    if st.button("Submit Test", type="primary", key="test_submit"):
        outcome = controller.submit()
        if outcome.status is SubmitStatus.BLOCKED:
            st.session_state.test_confirm_incomplete = outcome.message
            st.rerun()
        show_submit_outcome(outcome)
        if outcome.status is SubmitStatus.COMPLETED:
            st.rerun()


def page_test():
    controller = get_controller()
    if controller is None:
        st.session_state.page = "home"
        st.rerun()
        return

    state = controller.state
    if state is SessionState.COMPLETED:
        st.session_state.test_submission_id = controller.session.submission_id
        st.session_state.results_submission_id = controller.session.submission_id
        controller.close()
        st.session_state.page = "results"
        st.rerun()
        return
    if state is SessionState.FAILED:
        st.error(controller.error)
        if st.button("Back to start", key="test_failed_back"):
            reset_test_state()
            st.session_state.page = "home"
            st.rerun()
        return
    if state is SessionState.SUBMITTING:
        st.info("Submitting your test...")
        render_clock()
        return

    test = controller.test
    col1, col2 = st.columns([3, 1])
    with col1:
        st.header(test.title or "Test")
    with col2:
        render_clock()

    if controller.time_is_up():
        st.error(controller.error or "Time is up and the submission did not go through.")
        if st.button("Retry submission", type="primary", key="test_retry_after_deadline"):
            show_submit_outcome(controller.submit())
            st.rerun()
        return

    if controller.error:
        st.error(controller.error)

    render_navigator()
    st.divider()

    index = st.session_state.test_index
    view = get_view(index)
    question = view.question
    st.subheader(f"Question {index + 1} of {len(controller.questions)}")
    st.caption(f"{config.QUESTION_KIND_DISPLAY.get(question.kind.value, question.kind.value)} | "
               f"{question.marks:g} marks")
    st.markdown(f"**{question.prompt}**")

    if isinstance(view, ChoiceView):
        render_choice(view)
    elif isinstance(view, FreeTextView):
        render_free_text(view)
    elif isinstance(view, CodeView):
        render_code(view)

    col1, col2, col3 = st.columns(3)
    with col1:
        if st.button("Previous", disabled=index == 0, key="test_prev"):
            st.session_state.test_index = index - 1
            st.rerun()
    with col2:
        if st.button("Next", disabled=index >= len(controller.questions) - 1, key="test_next"):
            st.session_state.test_index = index + 1
            st.rerun()
    with col3:
        if st.button("Clear answer", key="test_clear"):
            view.clear()
            for k in [k for k in st.session_state.keys() if k.startswith(f"q_{question.id}")]:
                del st.session_state[k]
            st.rerun()

    st.divider()
    st.caption(f"Answered {controller.answered_count()} of {len(controller.questions)}")
    render_submit(controller)


# =====================================================================
# Section 6: Results Page
# =====================================================================

def render_breakdown(breakdown: GradeBreakdown):
    st.header(f"Results: {breakdown.test_title or 'Test'}")
    if breakdown.submitted_at:
        st.caption(f"Submitted {breakdown.submitted_at[:19].replace('T', ' ')}")

    col1, col2, col3 = st.columns(3)
    with col1:
        st.metric("Multiple choice", f"{breakdown.choice_score:g}/{breakdown.choice_max:g}",
                  f"{breakdown.choice_percentage:.1f}%")
    with col2:
        st.metric("Score so far", f"{breakdown.total_score:g}/{breakdown.scored_max:g}")
    with col3:
        if breakdown.fully_evaluated:
            st.metric("Status", "Fully evaluated")
        else:
            st.metric("Status", "Pending", f"{breakdown.pending_count} to review", delta_color="off")

    if breakdown.fully_evaluated and breakdown.passed is not None:
        if breakdown.passed:
            st.success("Passed")
        else:
            st.error("Not passed")

    for kind, responses in breakdown.by_kind().items():
        if not responses:
            continue
        st.subheader(config.QUESTION_KIND_DISPLAY.get(kind.value, kind.value))
        for i, r in enumerate(responses, 1):
            score = "-" if r.score is None else f"{r.score:g}"
            with st.expander(f"{i}. {r.question_text or r.question_id}  ({score}/{r.max_marks:g})"):
                if r.options:
                    st.write(f"Your answer: {r.selected_option_text()}")
                    correct = r.correct_option_text()
                    if correct:
                        st.write(f"Correct answer: {correct}")
                elif r.answer:
                    st.code(r.answer if isinstance(r.answer, str) else ", ".join(r.answer))
                if r.evaluation_status is EvaluationStatus.PENDING_MANUAL_REVIEW:
                    st.warning("Pending review")
                else:
                    st.caption(r.evaluation_status.value.replace("_", " ").title())
                if r.comments:
                    st.info(f"Comments: {r.comments}")


def page_results():
    submission_id = st.text_input(
        "Submission ID", value=st.session_state.get("results_submission_id", ""), key="results_id_input",
    )
    if not submission_id:
        st.info("Enter a submission ID to see its results.")
        return
    st.session_state.results_submission_id = submission_id
    try:
        with st.spinner("Loading results..."):
            breakdown = fetch_grade_breakdown(get_api(), submission_id)
    except (ApiError, ResultsError) as e:
        st.error(f"Could not load results: {e}")
        if st.button("Retry", key="results_retry"):
            st.rerun()
        return
    render_breakdown(breakdown)


# =====================================================================
# Section 7: Main Router
# =====================================================================

def main():
    render_sidebar()

    page = st.session_state.page

    routes = {
        "home": page_home,
        "permissions": page_permissions,
        "test": page_test,
        "results": page_results,
    }

    handler = routes.get(page, page_home)
    handler()


if __name__ == "__main__":
    main()
