"""Assessment data model and the question type adapter.

Questions arrive from the backend as loosely shaped JSON with a ``type``
string. They are parsed once, at load time, into one of three frozen
variants (:class:`ChoiceQuestion`, :class:`FreeTextQuestion`,
:class:`CodeQuestion`). Everything downstream dispatches on the variant,
never on the raw string.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union


class QuestionKind(str, Enum):
    """Question variants, valued with the backend's own casing."""
    CHOICE = "MCQ"
    FREE_TEXT = "DESCRIPTIVE"
    CODE = "CODE"


class SessionState(str, Enum):
    LOADING = "loading"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    COMPLETED = "completed"
    FAILED = "failed"


class SubmissionTrigger(str, Enum):
    MANUAL = "MANUAL"
    AUTO_TIME = "AUTO_TIME"


class TestDefinitionError(Exception):
    """Raised when a test payload is missing required fields or is malformed."""

    __test__ = False


# ---------------------------------------------------------------------------
# Questions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ChoiceOption:
    option_id: str
    text: str


@dataclass(frozen=True)
class SampleTestCase:
    """A visible sample case. Hidden grading cases never reach the client."""
    input: str
    expected_output: str


@dataclass(frozen=True)
class Question:
    id: str
    prompt: str
    marks: float
    order: int = 0

    kind: ClassVar[QuestionKind]


@dataclass(frozen=True)
class ChoiceQuestion(Question):
    options: Tuple[ChoiceOption, ...] = ()
    multi_select: bool = False

    kind: ClassVar[QuestionKind] = QuestionKind.CHOICE

    def option_ids(self) -> List[str]:
        return [o.option_id for o in self.options]

    def option_text(self, option_id: str) -> str:
        for option in self.options:
            if option.option_id == option_id:
                return option.text
        return option_id


@dataclass(frozen=True)
class FreeTextQuestion(Question):
    expected_word_count: Optional[int] = None  # advisory only

    kind: ClassVar[QuestionKind] = QuestionKind.FREE_TEXT


@dataclass(frozen=True)
class CodeQuestion(Question):
    language: str = "javascript"
    constraints: str = ""
    time_limit_ms: Optional[int] = None      # enforced server-side
    memory_limit_mb: Optional[int] = None    # enforced server-side
    sample_cases: Tuple[SampleTestCase, ...] = ()

    kind: ClassVar[QuestionKind] = QuestionKind.CODE


@dataclass(frozen=True)
class TestDefinition:
    """Immutable test fetched once per session."""

    __test__ = False

    id: str
    title: str
    duration_minutes: float
    max_marks: float
    questions: Tuple[Question, ...]
    passing_marks: Optional[float] = None
    description: str = ""
    shuffle_questions: bool = False
    status: str = ""

    @property
    def duration_seconds(self) -> int:
        return int(self.duration_minutes * 60)

    def question(self, question_id: str) -> Optional[Question]:
        for q in self.questions:
            if q.id == question_id:
                return q
        return None

    def question_ids(self) -> List[str]:
        return [q.id for q in self.questions]


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CodeAnswer:
    source: str
    language: str


ResponsePayload = Union[FrozenSet[str], str, CodeAnswer]


@dataclass(frozen=True)
class Response:
    question_id: str
    kind: QuestionKind
    payload: ResponsePayload


@dataclass
class Session:
    """The mutable run of one attempt. Never persisted."""
    test_id: str
    started_at: datetime = field(default_factory=datetime.now)
    remaining_seconds: int = 0
    state: SessionState = SessionState.LOADING
    submission_id: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class SubmissionPayload:
    """Snapshot of the answers sent by one submit attempt. Never mutated."""
    test_id: str
    responses: Tuple[Response, ...]
    submission_type: SubmissionTrigger
    total_time_spent: int
    monitoring_events: Tuple[Dict[str, Any], ...] = ()

    def to_json(self) -> Dict[str, Any]:
        return {
            "responses": [serialize_response(r) for r in self.responses],
            "submissionType": self.submission_type.value,
            "totalTimeSpent": self.total_time_spent,
            "monitoringEvents": [dict(e) for e in self.monitoring_events],
        }


# ---------------------------------------------------------------------------
# Adapter: backend JSON -> variants
# ---------------------------------------------------------------------------

def _first(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return default


def unwrap(body: Any) -> Any:
    """Strip the ``{"data": ...}`` envelope the backend sometimes adds."""
    if isinstance(body, dict) and "data" in body and isinstance(body["data"], (dict, list)):
        return body["data"]
    return body


def _parse_kind(raw: Dict[str, Any]) -> Tuple[QuestionKind, bool]:
    """Return (kind, multi_select) for a raw question."""
    type_str = str(_first(raw, "type", "originalType", "questionType", default="")).upper()
    if type_str in ("MCQ", "TRUE_FALSE"):
        return QuestionKind.CHOICE, False
    if type_str == "MULTIPLE_SELECT":
        return QuestionKind.CHOICE, True
    if type_str in ("DESCRIPTIVE", "SHORT_ANSWER", "LONG_ANSWER"):
        return QuestionKind.FREE_TEXT, False
    if type_str == "CODE":
        return QuestionKind.CODE, False
    raise TestDefinitionError(f"Unknown question type: {type_str or '<missing>'}")


def _parse_options(raw_options: Iterable[Any]) -> Tuple[ChoiceOption, ...]:
    if not isinstance(raw_options, (list, tuple)):
        raise TestDefinitionError("Options are not a list")
    ordered = []
    for index, raw in enumerate(raw_options):
        if isinstance(raw, str):
            ordered.append((index, ChoiceOption(option_id=str(index), text=raw)))
            continue
        if not isinstance(raw, dict):
            raise TestDefinitionError(f"Option at position {index + 1} is not an object")
        option_id = _first(raw, "id", "optionId", default=str(index))
        text = _first(raw, "optionText", "text", "option_text", "label", "value", default="")
        order = _first(raw, "optionOrder", "order", default=index)
        ordered.append((order, ChoiceOption(option_id=str(option_id), text=str(text))))
    ordered.sort(key=lambda pair: pair[0])
    return tuple(option for _, option in ordered)


def _parse_sample_cases(raw_cases: Iterable[Dict[str, Any]]) -> Tuple[SampleTestCase, ...]:
    return tuple(
        SampleTestCase(
            input=str(_first(c, "input", default="")),
            expected_output=str(_first(c, "expected_output", "expectedOutput", "output", default="")),
        )
        for c in raw_cases
    )


def parse_question(raw: Dict[str, Any], position: int = 0) -> Question:
    question_id = _first(raw, "id", "questionId")
    if question_id is None:
        raise TestDefinitionError(f"Question at position {position + 1} has no id")
    prompt = str(_first(raw, "questionText", "text", "prompt", default=""))
    try:
        marks = float(_first(raw, "marks", "maxMarks", default=0))
    except (TypeError, ValueError):
        raise TestDefinitionError(f"Question {question_id} has non-numeric marks")
    if marks <= 0:
        raise TestDefinitionError(f"Question {question_id} must carry positive marks")
    order = int(_first(raw, "order", default=position))
    kind, multi_select = _parse_kind(raw)

    if kind is QuestionKind.CHOICE:
        options = _parse_options(_first(raw, "options", default=[]))
        if not options:
            raise TestDefinitionError(f"Choice question {question_id} has no options")
        return ChoiceQuestion(
            id=str(question_id), prompt=prompt, marks=marks, order=order,
            options=options,
            multi_select=bool(_first(raw, "multiSelect", default=multi_select)),
        )
    if kind is QuestionKind.FREE_TEXT:
        word_count = _first(raw, "expectedWordCount")
        return FreeTextQuestion(
            id=str(question_id), prompt=prompt, marks=marks, order=order,
            expected_word_count=int(word_count) if word_count else None,
        )
    if kind is QuestionKind.CODE:
        return CodeQuestion(
            id=str(question_id), prompt=prompt, marks=marks, order=order,
            language=str(_first(raw, "codeLanguage", "language", default="javascript")).lower(),
            constraints=str(_first(raw, "constraints", default="")),
            time_limit_ms=_first(raw, "time_limit_ms", "timeLimitMs"),
            memory_limit_mb=_first(raw, "memory_limit_mb", "memoryLimitMb"),
            sample_cases=_parse_sample_cases(
                _first(raw, "visible_testcases", "visibleTestcases", "visibleTestCases", default=[])
            ),
        )
    raise TestDefinitionError(f"Unhandled question kind: {kind}")


def parse_test_definition(body: Any) -> TestDefinition:
    """Build a :class:`TestDefinition` from a backend reply.

    Raises TestDefinitionError when the payload cannot start a session,
    most commonly because it has no questions.
    """
    data = unwrap(body)
    if isinstance(data, dict) and isinstance(data.get("test"), dict):
        data = data["test"]
    if not isinstance(data, dict):
        raise TestDefinitionError("Test payload is not an object")

    test_id = _first(data, "id", "testId")
    if test_id is None:
        raise TestDefinitionError("Test payload has no id")
    raw_questions = data.get("questions")
    if not raw_questions:
        raise TestDefinitionError("Test has no questions")
    if not isinstance(raw_questions, (list, tuple)):
        raise TestDefinitionError("Test questions are not a list")
    duration = _first(data, "durationInMinutes", "duration")
    if duration is None:
        raise TestDefinitionError("Test payload has no duration")

    questions = []
    for i, raw in enumerate(raw_questions):
        if not isinstance(raw, dict):
            raise TestDefinitionError(f"Question at position {i + 1} is not an object")
        try:
            questions.append(parse_question(raw, i))
        except (TypeError, ValueError, AttributeError) as e:
            raise TestDefinitionError(f"Question at position {i + 1} is malformed: {e}") from e
    seen = set()
    for q in questions:
        if q.id in seen:
            raise TestDefinitionError(f"Duplicate question id: {q.id}")
        seen.add(q.id)
    questions.sort(key=lambda q: q.order)

    passing = data.get("passingMarks")
    try:
        duration_minutes = float(duration)
        max_marks = float(_first(data, "maxMarks", default=sum(q.marks for q in questions)))
        passing_marks = float(passing) if passing is not None else None
    except (TypeError, ValueError) as e:
        raise TestDefinitionError(f"Test {test_id} has a non-numeric duration or marks: {e}") from e
    return TestDefinition(
        id=str(test_id),
        title=str(data.get("title", "")),
        duration_minutes=duration_minutes,
        max_marks=max_marks,
        questions=tuple(questions),
        passing_marks=passing_marks,
        description=str(data.get("description") or ""),
        shuffle_questions=bool(data.get("shuffleQuestions", False)),
        status=str(data.get("status") or ""),
    )


# ---------------------------------------------------------------------------
# Adapter: UI input -> payloads, payloads -> wire
# ---------------------------------------------------------------------------

def adapt_payload(question: Question, raw: Any) -> Optional[ResponsePayload]:
    """Normalize raw view input into the payload for ``question``'s kind.

    Returns None when the input is empty, which callers treat as a clear.
    Raises ValueError when the input does not fit the question.
    """
    if isinstance(question, ChoiceQuestion):
        if raw is None:
            return None
        selected = frozenset([raw]) if isinstance(raw, str) else frozenset(str(r) for r in raw)
        unknown = selected - set(question.option_ids())
        if unknown:
            raise ValueError(f"Unknown option(s) for question {question.id}: {sorted(unknown)}")
        if len(selected) > 1 and not question.multi_select:
            raise ValueError(f"Question {question.id} accepts a single option")
        return selected or None
    if isinstance(question, FreeTextQuestion):
        if raw is None:
            return None
        text = str(raw)
        return text if text.strip() else None
    if isinstance(question, CodeQuestion):
        if raw is None:
            return None
        if isinstance(raw, CodeAnswer):
            answer = raw
        else:
            answer = CodeAnswer(source=str(raw), language=question.language)
        return answer if answer.source.strip() else None
    raise TypeError(f"Unsupported question type: {type(question).__name__}")


def serialize_response(response: Response) -> Dict[str, Any]:
    """Wire form of one response inside the submission body."""
    payload = response.payload
    if response.kind is QuestionKind.CHOICE:
        return {"questionId": response.question_id, "type": response.kind.value,
                "answer": sorted(payload)}
    if response.kind is QuestionKind.FREE_TEXT:
        return {"questionId": response.question_id, "type": response.kind.value,
                "answer": payload}
    if response.kind is QuestionKind.CODE:
        return {"questionId": response.question_id, "type": response.kind.value,
                "code": payload.source, "language": payload.language}
    raise TypeError(f"Unsupported response kind: {response.kind}")
