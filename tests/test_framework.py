"""
complio - Tests for framework definitions
"""

import pytest

from complio.errors import ValidationError
from complio.framework import Framework, Question, Section, is_empty_answer, options_for


def make_framework(*sections):
    return Framework(id="fw", slug="fw", name="FW", sections=list(sections))


class TestFramework:

    def test_packaged_framework_order(self, framework):
        ids = [s.id for s in framework.sections]
        assert ids[:3] == ["entry", "common_nucleus", "dpia"]
        assert ids[-1] == "lia"
        assert len(framework.question_ids()) == len({q.id for s in framework.sections for q in s.questions})

    def test_duplicate_question_ids_rejected(self):
        with pytest.raises(ValidationError):
            make_framework(
                Section("a", "A", questions=[Question("Q1", "?")]),
                Section("b", "B", questions=[Question("Q1", "?")]),
            )

    def test_sections_and_questions_sorted(self):
        fw = make_framework(
            Section("b", "B", display_order=2, questions=[Question("Q2", "?", display_order=2), Question("Q1", "?", display_order=1)]),
            Section("a", "A", display_order=1, questions=[Question("Q3", "?")]),
        )
        assert [s.id for s in fw.sections] == ["a", "b"]
        assert [q.id for q in fw.sections[1].questions] == ["Q1", "Q2"]

    def test_active_sections_use_framework_order_and_drop_empty(self):
        fw = make_framework(
            Section("a", "A", display_order=1, questions=[Question("Q1", "?")]),
            Section("empty", "Empty", display_order=2),
            Section("c", "C", display_order=3, questions=[Question("Q2", "?")]),
        )
        assert [s.id for s in fw.active_sections(["c", "empty", "a"])] == ["a", "c"]

    def test_completion_ignores_inactive_sections(self, framework):
        base = ["entry", "common_nucleus"]
        responses = {"E1": "x", "E2": "No", "DP.1": ["Email"]}
        # 2 of the 9 base questions answered; DP.1 is in an inactive section
        assert framework.completion_percentage(responses, base) == round(2 / 9 * 100, 1)
        assert framework.completion_percentage({}, []) == 0.0

    def test_dict_round_trip(self, framework):
        assert Framework.from_dict(framework.to_dict()) == framework

    def test_unknown_question_type(self):
        with pytest.raises(ValidationError):
            Question("Q", "?", type="slider")


class TestOptions:

    def test_list_source_uses_entries(self):
        question = Question("DP.1", "?", type="multi_select", options=["A"], option_source="list")
        entries = [{"label": "Second", "display_order": 2}, {"label": "First", "display_order": 1}]
        assert options_for(question, entries) == ["First", "Second"]
        assert options_for(question, []) == ["A"]

    def test_static_source_ignores_entries(self):
        question = Question("E2", "?", options=["Yes", "No"])
        assert options_for(question, [{"label": "Maybe", "display_order": 1}]) == ["Yes", "No"]


@pytest.mark.parametrize("value,empty", [
    (None, True),
    ("", True),
    ("  ", True),
    ([], True),
    ("No", False),
    (["x"], False),
])
def test_is_empty_answer(value, empty):
    assert is_empty_answer(value) is empty
