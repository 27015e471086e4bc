import pytest

from models import QuestionKind
from results import EvaluationStatus, ResultsError, fetch_grade_breakdown, parse_grade_breakdown

SUBMISSION = {
    "submissionId": "sub-1",
    "testTitle": "Python Basics",
    "status": "PARTIALLY_EVALUATED",
    "maxMarks": 5,
    "responses": [
        {
            "questionId": "q1",
            "type": "MCQ",
            "maxMarks": 1,
            "score": 1,
            "evaluationStatus": "PENDING_MANUAL_REVIEW",
            "answer": "b",
            "options": [
                {"id": "a", "text": "3"},
                {"id": "b", "text": "4", "correct": True},
            ],
        },
        {"questionId": "q2", "type": "MCQ", "maxMarks": 1, "score": 0, "answer": None,
         "options": [{"id": "a", "text": "()"}, {"id": "b", "text": "[]", "correct": True}]},
        {"questionId": "q3", "type": "CODE", "maxMarks": 3, "score": None},
    ],
}


class TestGradeBreakdown:
    def test_totals_use_graded_scores_only(self):
        breakdown = parse_grade_breakdown(SUBMISSION)

        assert breakdown.total_score == 1
        assert breakdown.scored_max == 2
        assert breakdown.total_max == 5
        assert breakdown.percentage == pytest.approx(50.0)
        assert breakdown.pending_count == 1
        assert not breakdown.fully_evaluated

    def test_nothing_graded_has_no_percentage(self):
        breakdown = parse_grade_breakdown({"responses": [{"questionId": "d1", "type": "DESCRIPTIVE", "maxMarks": 4}]})
        assert breakdown.percentage is None
        assert breakdown.total_score == 0
        assert breakdown.responses[0].evaluation_status is EvaluationStatus.PENDING_MANUAL_REVIEW

    def test_fully_evaluated_without_status_field(self):
        breakdown = parse_grade_breakdown(
            {"responses": [{"questionId": "d1", "type": "DESCRIPTIVE", "maxMarks": 4, "score": 3,
                            "evaluationStatus": "EVALUATED", "evaluatorComments": "Clear."}]}
        )
        assert breakdown.fully_evaluated
        assert breakdown.responses[0].comments == "Clear."

    def test_choice_answers_are_auto_evaluated(self):
        response = parse_grade_breakdown(SUBMISSION).responses[0]
        assert response.evaluation_status is EvaluationStatus.AUTO_EVALUATED

    def test_option_texts(self):
        q1, q2, _ = parse_grade_breakdown(SUBMISSION).responses
        assert q1.selected_option_text() == "4"
        assert q1.correct_option_text() == "4"
        assert q2.selected_option_text() == "No answer selected"

    def test_grouped_by_kind(self):
        groups = parse_grade_breakdown(SUBMISSION).by_kind()
        assert [r.question_id for r in groups[QuestionKind.CHOICE]] == ["q1", "q2"]
        assert [r.question_id for r in groups[QuestionKind.CODE]] == ["q3"]
        assert groups[QuestionKind.FREE_TEXT] == []

    def test_choice_summary(self):
        breakdown = parse_grade_breakdown(SUBMISSION)
        assert (breakdown.choice_score, breakdown.choice_max) == (1, 2)
        assert breakdown.choice_percentage == pytest.approx(50.0)


class TestParsing:
    def test_picks_matching_submission_from_list(self):
        body = {"submissions": [{"submissionId": "new", "responses": []}, dict(SUBMISSION)]}
        assert parse_grade_breakdown(body, "sub-1").test_title == "Python Basics"
        assert parse_grade_breakdown(body, "other").submission_id == "new"

    def test_empty_submission_list(self):
        with pytest.raises(ResultsError):
            parse_grade_breakdown({"submissions": []})

    def test_non_object_body(self):
        with pytest.raises(ResultsError):
            parse_grade_breakdown("oops")

    def test_unknown_response_type_is_skipped(self):
        breakdown = parse_grade_breakdown({"responses": [{"questionId": "x", "type": "MATCHING", "score": 1}]})
        assert breakdown.responses == ()

    def test_fetch_uses_results_endpoint(self, api, backend):
        backend.on("GET", "/student/submissions/sub-1/results", (200, {"success": True, "data": SUBMISSION}))
        breakdown = fetch_grade_breakdown(api, "sub-1")

        assert breakdown.submission_id == "sub-1"
        assert len(backend.calls("GET", "/student/submissions/sub-1/results")) == 1
