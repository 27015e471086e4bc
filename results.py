"""Read-only grade breakdown for a finished submission."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from api_client import ApiClient
from models import QuestionKind

logger = logging.getLogger(__name__)

FULLY_EVALUATED = "FULLY_EVALUATED"

_KIND_BY_TYPE = {
    "MCQ": QuestionKind.CHOICE,
    "TRUE_FALSE": QuestionKind.CHOICE,
    "MULTIPLE_SELECT": QuestionKind.CHOICE,
    "DESCRIPTIVE": QuestionKind.FREE_TEXT,
    "SHORT_ANSWER": QuestionKind.FREE_TEXT,
    "LONG_ANSWER": QuestionKind.FREE_TEXT,
    "CODE": QuestionKind.CODE,
}


class ResultsError(Exception):
    """The backend reply holds no usable submission."""


class EvaluationStatus(str, Enum):
    AUTO_EVALUATED = "AUTO_EVALUATED"
    PENDING_MANUAL_REVIEW = "PENDING_MANUAL_REVIEW"
    EVALUATED = "EVALUATED"


def _parse_status(raw: Any, kind: QuestionKind) -> EvaluationStatus:
    # Choice answers are always graded automatically.
    if kind is QuestionKind.CHOICE:
        return EvaluationStatus.AUTO_EVALUATED
    value = str(raw or "").upper()
    if value == "EVALUATED":
        return EvaluationStatus.EVALUATED
    if value in ("AUTO_EVALUATED", "AUTO"):
        return EvaluationStatus.AUTO_EVALUATED
    return EvaluationStatus.PENDING_MANUAL_REVIEW


@dataclass(frozen=True)
class GradedOption:
    option_id: str
    text: str
    correct: bool = False


@dataclass(frozen=True)
class GradedResponse:
    question_id: str
    kind: QuestionKind
    max_marks: float
    evaluation_status: EvaluationStatus
    score: Optional[float] = None      # None until graded; never read as zero
    comments: Optional[str] = None
    question_text: str = ""
    answer: Union[str, Tuple[str, ...], None] = None
    options: Tuple[GradedOption, ...] = ()

    @property
    def is_scored(self) -> bool:
        return self.score is not None

    def selected_ids(self) -> Tuple[str, ...]:
        if self.answer is None:
            return ()
        if isinstance(self.answer, tuple):
            return self.answer
        return tuple(part.strip() for part in self.answer.split(",") if part.strip())

    def selected_option_text(self) -> str:
        texts = {o.option_id: o.text for o in self.options}
        chosen = [texts[i] for i in self.selected_ids() if i in texts]
        return ", ".join(chosen) if chosen else "No answer selected"

    def correct_option_text(self) -> str:
        return ", ".join(o.text for o in self.options if o.correct)


@dataclass(frozen=True)
class GradeBreakdown:
    submission_id: str
    responses: Tuple[GradedResponse, ...]
    status: str = ""
    passed: Optional[bool] = None
    max_marks: Optional[float] = None
    test_title: str = ""
    submitted_at: str = ""

    @property
    def total_score(self) -> float:
        """Sum of the scores graded so far."""
        return sum(r.score for r in self.responses if r.score is not None)

    @property
    def scored_max(self) -> float:
        return sum(r.max_marks for r in self.responses if r.score is not None)

    @property
    def total_max(self) -> float:
        if self.max_marks is not None:
            return self.max_marks
        return sum(r.max_marks for r in self.responses)

    @property
    def percentage(self) -> Optional[float]:
        """Percentage over graded responses only; None while nothing is graded."""
        if not self.scored_max:
            return None
        return self.total_score / self.scored_max * 100

    @property
    def pending_count(self) -> int:
        return sum(1 for r in self.responses if r.score is None)

    @property
    def fully_evaluated(self) -> bool:
        if self.status:
            return self.status.upper() == FULLY_EVALUATED
        return self.pending_count == 0

    def by_kind(self) -> Dict[QuestionKind, List[GradedResponse]]:
        groups: Dict[QuestionKind, List[GradedResponse]] = {kind: [] for kind in QuestionKind}
        for response in self.responses:
            groups[response.kind].append(response)
        return groups

    @property
    def choice_score(self) -> float:
        return sum(r.score or 0 for r in self.by_kind()[QuestionKind.CHOICE])

    @property
    def choice_max(self) -> float:
        return sum(r.max_marks for r in self.by_kind()[QuestionKind.CHOICE])

    @property
    def choice_percentage(self) -> float:
        return self.choice_score / self.choice_max * 100 if self.choice_max else 0.0


def _optional_float(raw: Any) -> Optional[float]:
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def _parse_answer(raw: Any) -> Union[str, Tuple[str, ...], None]:
    if raw is None:
        return None
    if isinstance(raw, (list, tuple)):
        return tuple(str(a) for a in raw)
    return str(raw)


def _parse_response(raw: Dict[str, Any]) -> Optional[GradedResponse]:
    type_str = str(raw.get("type") or "").upper()
    kind = _KIND_BY_TYPE.get(type_str)
    if kind is None:
        logger.warning("Skipping graded response of unknown type %r", type_str)
        return None
    return GradedResponse(
        question_id=str(raw.get("questionId", "")),
        kind=kind,
        max_marks=_optional_float(raw.get("maxMarks")) or 0.0,
        evaluation_status=_parse_status(raw.get("evaluationStatus"), kind),
        score=_optional_float(raw.get("score")),
        comments=raw.get("evaluatorComments") or None,
        question_text=str(raw.get("questionText") or ""),
        answer=_parse_answer(raw.get("answer")),
        options=tuple(
            GradedOption(option_id=str(o.get("id", "")), text=str(o.get("text", "")),
                         correct=bool(o.get("correct", False)))
            for o in raw.get("options") or []
            if isinstance(o, dict)
        ),
    )


def parse_grade_breakdown(body: Any, submission_id: Optional[str] = None) -> GradeBreakdown:
    """Parse a results reply.

    Accepts either a single submission object or ``{"submissions": [...]}``
    (newest first). With a list, the entry matching ``submission_id`` wins,
    otherwise the newest.
    """
    data = body
    if isinstance(data, dict) and isinstance(data.get("submissions"), list):
        submissions = [s for s in data["submissions"] if isinstance(s, dict)]
        if not submissions:
            raise ResultsError("No submissions found for this test.")
        matching = [s for s in submissions if str(s.get("submissionId")) == str(submission_id)]
        data = matching[0] if matching else submissions[0]
    if not isinstance(data, dict):
        raise ResultsError("Unexpected results format.")

    responses = [_parse_response(r) for r in data.get("responses") or [] if isinstance(r, dict)]
    passed = data.get("passed")
    return GradeBreakdown(
        submission_id=str(data.get("submissionId") or submission_id or ""),
        responses=tuple(r for r in responses if r is not None),
        status=str(data.get("status") or ""),
        passed=bool(passed) if passed is not None else None,
        max_marks=_optional_float(data.get("maxMarks")),
        test_title=str(data.get("testTitle") or ""),
        submitted_at=str(data.get("submittedAt") or ""),
    )


def fetch_grade_breakdown(api: ApiClient, submission_id: str) -> GradeBreakdown:
    """GET and parse results. ApiError and ResultsError propagate to the view."""
    return parse_grade_breakdown(api.get_results(submission_id), submission_id)
