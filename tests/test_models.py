import copy

import pytest

from conftest import MIXED_TEST, SAMPLE_TEST
from models import (
    ChoiceQuestion,
    CodeAnswer,
    CodeQuestion,
    FreeTextQuestion,
    QuestionKind,
    Response,
    SubmissionPayload,
    SubmissionTrigger,
    TestDefinitionError,
    adapt_payload,
    parse_test_definition,
    serialize_response,
)


def _sample(**overrides):
    body = copy.deepcopy(SAMPLE_TEST)
    body.update(overrides)
    return body


class TestParseTestDefinition:
    def test_parses_each_variant(self):
        test = parse_test_definition({"data": _sample()})

        assert test.id == "t1"
        assert test.duration_seconds == 120
        assert test.max_marks == 5
        assert test.passing_marks == 3
        assert [q.id for q in test.questions] == ["q1", "q2", "q3"]
        q1, _, q3 = test.questions
        assert isinstance(q1, ChoiceQuestion)
        assert q1.kind is QuestionKind.CHOICE
        assert q1.option_ids() == ["a", "b"]
        assert q1.option_text("b") == "4"
        assert not q1.multi_select
        assert isinstance(q3, CodeQuestion)
        assert q3.language == "python"
        assert [c.expected_output for c in q3.sample_cases] == ["3", "12"]

    def test_accepts_aliases_and_nested_test_key(self):
        test = parse_test_definition({"data": {"test": copy.deepcopy(MIXED_TEST)}})

        choice, free_text, code = test.questions
        assert choice.multi_select
        assert choice.prompt == "Pick the even numbers"
        assert isinstance(free_text, FreeTextQuestion)
        assert free_text.expected_word_count == 5
        assert isinstance(code, CodeQuestion)
        assert code.language == "javascript"
        assert code.sample_cases == ()
        assert test.duration_seconds == 30 * 60

    def test_max_marks_defaults_to_sum_of_question_marks(self):
        body = copy.deepcopy(MIXED_TEST)
        test = parse_test_definition(body)
        assert test.max_marks == 10

    def test_questions_sorted_by_order(self):
        body = _sample()
        body["questions"][0]["order"] = 9
        test = parse_test_definition(body)
        assert test.question_ids() == ["q2", "q3", "q1"]

    def test_string_options_get_positional_ids(self):
        body = _sample()
        body["questions"][0]["options"] = ["red", "green"]
        test = parse_test_definition(body)
        assert test.question("q1").options[1].option_id == "1"
        assert test.question("q1").option_text("1") == "green"

    def test_options_sorted_by_option_order(self):
        body = _sample()
        body["questions"][0]["options"] = [
            {"id": "x", "optionText": "second", "optionOrder": 2},
            {"id": "y", "optionText": "first", "optionOrder": 1},
        ]
        test = parse_test_definition(body)
        assert test.question("q1").option_ids() == ["y", "x"]

    @pytest.mark.parametrize("body, message", [
        ({"id": "t1", "durationInMinutes": 2, "questions": []}, "no questions"),
        ({"id": "t1", "durationInMinutes": 2}, "no questions"),
        ({"durationInMinutes": 2, "questions": [{"id": "q", "type": "MCQ"}]}, "no id"),
        ("not json", "not an object"),
    ])
    def test_rejects_incomplete_payloads(self, body, message):
        with pytest.raises(TestDefinitionError, match=message):
            parse_test_definition(body)

    def test_rejects_missing_duration(self):
        body = _sample()
        del body["durationInMinutes"]
        with pytest.raises(TestDefinitionError, match="duration"):
            parse_test_definition(body)

    def test_rejects_unknown_question_type(self):
        body = _sample()
        body["questions"][1]["type"] = "ESSAY_PLUS"
        with pytest.raises(TestDefinitionError, match="Unknown question type"):
            parse_test_definition(body)

    def test_rejects_non_positive_marks(self):
        body = _sample()
        body["questions"][0]["marks"] = 0
        with pytest.raises(TestDefinitionError, match="positive marks"):
            parse_test_definition(body)

    def test_rejects_choice_without_options(self):
        body = _sample()
        body["questions"][0]["options"] = []
        with pytest.raises(TestDefinitionError, match="no options"):
            parse_test_definition(body)

    @pytest.mark.parametrize("corrupt", [
        lambda body: body["questions"][0].update(order="first"),
        lambda body: body.update(durationInMinutes="two"),
        lambda body: body["questions"][0].update(options=[1, 2]),
        lambda body: body["questions"][0].update(options={"a": "3"}),
        lambda body: body.update(questions={"a": 1}),
        lambda body: body.update(questions=[1, 2]),
        lambda body: body.update(passingMarks="n/a"),
        lambda body: body.update(maxMarks=[5]),
        lambda body: body["questions"][2].update(visible_testcases=["1 2"]),
    ])
    def test_badly_typed_fields_are_definition_errors(self, corrupt):
        body = _sample()
        corrupt(body)
        with pytest.raises(TestDefinitionError):
            parse_test_definition(body)

    def test_rejects_duplicate_question_ids(self):
        body = _sample()
        body["questions"][1]["id"] = "q1"
        with pytest.raises(TestDefinitionError, match="Duplicate"):
            parse_test_definition(body)


class TestAdaptPayload:
    @pytest.fixture
    def test(self):
        return parse_test_definition(copy.deepcopy(MIXED_TEST))

    def test_choice_accepts_single_id_or_collection(self, test):
        choice = test.question("m1")
        assert adapt_payload(choice, "o2") == frozenset({"o2"})
        assert adapt_payload(choice, ["o2", "o3"]) == frozenset({"o2", "o3"})

    def test_empty_choice_means_clear(self, test):
        assert adapt_payload(test.question("m1"), []) is None
        assert adapt_payload(test.question("m1"), None) is None

    def test_choice_rejects_unknown_option(self, test):
        with pytest.raises(ValueError, match="Unknown option"):
            adapt_payload(test.question("m1"), {"o9"})

    def test_single_select_rejects_two_options(self):
        single = parse_test_definition(_sample()).question("q1")
        with pytest.raises(ValueError, match="single option"):
            adapt_payload(single, {"a", "b"})

    def test_blank_free_text_means_clear(self, test):
        assert adapt_payload(test.question("d1"), "   \n") is None
        assert adapt_payload(test.question("d1"), "A function calling itself") == "A function calling itself"

    def test_code_source_takes_question_language(self, test):
        answer = adapt_payload(test.question("c1"), "console.log(1)")
        assert answer == CodeAnswer(source="console.log(1)", language="javascript")

    def test_blank_code_means_clear(self, test):
        assert adapt_payload(test.question("c1"), CodeAnswer(" ", "python")) is None


class TestSerialization:
    def test_each_kind_has_its_wire_shape(self):
        assert serialize_response(Response("q1", QuestionKind.CHOICE, frozenset({"c", "a"}))) == {
            "questionId": "q1", "type": "MCQ", "answer": ["a", "c"],
        }
        assert serialize_response(Response("d1", QuestionKind.FREE_TEXT, "text")) == {
            "questionId": "d1", "type": "DESCRIPTIVE", "answer": "text",
        }
        assert serialize_response(Response("c1", QuestionKind.CODE, CodeAnswer("print(1)", "python"))) == {
            "questionId": "c1", "type": "CODE", "code": "print(1)", "language": "python",
        }

    def test_submission_payload_json(self):
        payload = SubmissionPayload(
            test_id="t1",
            responses=(Response("q1", QuestionKind.CHOICE, frozenset({"b"})),),
            submission_type=SubmissionTrigger.AUTO_TIME,
            total_time_spent=120,
            monitoring_events=({"eventType": "TAB_SWITCH"},),
        )
        assert payload.to_json() == {
            "responses": [{"questionId": "q1", "type": "MCQ", "answer": ["b"]}],
            "submissionType": "AUTO_TIME",
            "totalTimeSpent": 120,
            "monitoringEvents": [{"eventType": "TAB_SWITCH"}],
        }
