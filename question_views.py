"""Input state for one question, one class per question kind.

Views hold what the learner is editing and push every change through
``SessionController.record_response``. They never write to the response
store directly, so the controller's write guard always applies.
"""

from typing import TYPE_CHECKING, Callable, Optional, Set

import config
from code_execution import CodeRunner, ExecutionReport, RunRequest
from models import ChoiceQuestion, CodeAnswer, CodeQuestion, FreeTextQuestion, Question

if TYPE_CHECKING:
    from session import SessionController


def starter_template(language: str) -> str:
    templates = config.STARTER_TEMPLATES
    return templates.get(language, templates[config.DEFAULT_CODE_LANGUAGE])


def count_words(text: str) -> int:
    return len(text.split())


class QuestionView:
    def __init__(self, question: Question, controller: "SessionController"):
        self.question = question
        self.controller = controller

    @property
    def answered(self) -> bool:
        return self.controller.get_response(self.question.id) is not None

    def clear(self) -> bool:
        accepted = self.controller.clear_response(self.question.id)
        if accepted:
            self._reset_local()
        return accepted

    def _reset_local(self) -> None:
        pass


class ChoiceView(QuestionView):
    """Every toggle is recorded immediately; there is no confirm step."""

    question: ChoiceQuestion

    def __init__(self, question: ChoiceQuestion, controller: "SessionController"):
        super().__init__(question, controller)
        prior = controller.get_response(question.id)
        self.selected: Set[str] = set(prior.payload) if prior else set()

    def option_at(self, index: int) -> str:
        """Option id for a 1-based menu position."""
        options = self.question.options
        if not 1 <= index <= len(options):
            raise ValueError(f"Choose an option between 1 and {len(options)}")
        return options[index - 1].option_id

    def toggle(self, option_id: str) -> bool:
        if option_id not in self.question.option_ids():
            raise ValueError(f"Unknown option: {option_id}")
        if option_id in self.selected:
            selected = self.selected - {option_id}
        elif self.question.multi_select:
            selected = self.selected | {option_id}
        else:
            selected = {option_id}
        return self._apply(selected)

    def select(self, option_id: str) -> bool:
        """Select ``option_id`` without deselecting it if already chosen."""
        if option_id in self.selected:
            return self.controller.accepting_writes()
        return self.toggle(option_id)

    def _apply(self, selected: Set[str]) -> bool:
        accepted = self.controller.record_response(self.question.id, frozenset(selected))
        if accepted:
            self.selected = selected
        return accepted

    def _reset_local(self) -> None:
        self.selected = set()


class FreeTextView(QuestionView):
    question: FreeTextQuestion

    def __init__(self, question: FreeTextQuestion, controller: "SessionController"):
        super().__init__(question, controller)
        prior = controller.get_response(question.id)
        self.text: str = prior.payload if prior else ""

    def set_text(self, text: str) -> bool:
        accepted = self.controller.record_response(self.question.id, text)
        if accepted:
            self.text = text
        return accepted

    @property
    def word_count(self) -> int:
        return count_words(self.text)

    @property
    def over_word_limit(self) -> bool:
        limit = self.question.expected_word_count
        return bool(limit) and self.word_count > limit

    def _reset_local(self) -> None:
        self.text = ""


class CodeView(QuestionView):
    """Source buffer for a code question.

    The buffer starts from the prior answer, or from the language's starter
    template. The template itself is not recorded; the first edit is.
    """

    question: CodeQuestion

    def __init__(
        self,
        question: CodeQuestion,
        controller: "SessionController",
        runner: Optional[CodeRunner] = None,
    ):
        super().__init__(question, controller)
        self.runner = runner
        prior = controller.get_response(question.id)
        if prior:
            self.language = prior.payload.language
            self.source = prior.payload.source
        else:
            self.language = question.language
            self.source = starter_template(self.language)
        if runner is not None:
            runner.focus(question.id)

    @property
    def is_template(self) -> bool:
        return self.source == starter_template(self.language)

    def set_source(self, source: str) -> bool:
        accepted = self.controller.record_response(self.question.id, CodeAnswer(source, self.language))
        if accepted:
            self.source = source
        return accepted

    def set_language(self, language: str) -> bool:
        language = language.lower()
        if language == self.language:
            return True
        if self.is_template:
            if not self.controller.accepting_writes():
                return False
            self.language = language
            self.source = starter_template(language)
            return True
        accepted = self.controller.record_response(self.question.id, CodeAnswer(self.source, language))
        if accepted:
            self.language = language
        return accepted

    def run(self, on_done: Optional[Callable[[ExecutionReport], None]] = None) -> RunRequest:
        """Run the buffer against the sample cases. Does not record anything."""
        if self.runner is None:
            raise RuntimeError("No code runner configured")
        return self.runner.run(self.question, self.source, on_done, language=self.language)

    @property
    def is_running(self) -> bool:
        return self.runner is not None and self.runner.is_running(self.question.id)

    @property
    def report(self) -> Optional[ExecutionReport]:
        return self.runner.last_report(self.question.id) if self.runner else None

    def _reset_local(self) -> None:
        self.source = starter_template(self.language)


def view_for(
    question: Question,
    controller: "SessionController",
    runner: Optional[CodeRunner] = None,
) -> QuestionView:
    """Build the view for ``question``.

    Passing the runner also moves its focus here, so a code run still
    pending for another question is discarded when it finishes.
    """
    if runner is not None:
        runner.focus(question.id)
    if isinstance(question, ChoiceQuestion):
        return ChoiceView(question, controller)
    if isinstance(question, FreeTextQuestion):
        return FreeTextView(question, controller)
    if isinstance(question, CodeQuestion):
        return CodeView(question, controller, runner)
    raise TypeError(f"Unsupported question type: {type(question).__name__}")
