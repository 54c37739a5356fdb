from flowrun.conditions import compare, evaluate_condition, resolve_field, select_branch
from flowrun.contracts import RunContext
from flowrun.registry.models import Condition


def _context(**kwargs) -> RunContext:
    return RunContext(**kwargs)


def test_resolve_field_prefers_variables_over_input():
    context = _context(variables={"score": 90}, input={"score": 10})
    assert resolve_field("score", context) == 90


def test_resolve_field_falls_back_to_input_and_context():
    context = _context(input={"region": "eu"}, user_id="u7")
    assert resolve_field("region", context) == "eu"
    assert resolve_field("user_id", context) == "u7"
    assert resolve_field("missing", context) is None


def test_resolve_field_walks_dotted_step_output():
    context = _context(variables={"step-1": {"score": 72, "meta": {"tier": "gold"}}})
    assert resolve_field("step-1.score", context) == 72
    assert resolve_field("step-1.meta.tier", context) == "gold"
    assert resolve_field("step-1.nothing", context) is None


def test_compare_numeric_and_loose_equality():
    assert compare(80, ">=", 80)
    assert compare("81", ">", 80)
    assert not compare(10, ">", 50)
    assert compare("5", "==", 5)
    assert compare("a", "!=", "b")
    assert not compare(None, "==", 0)


def test_compare_strings_lexically():
    assert compare("apple", "<", "banana")
    assert not compare("pear", "<=", "banana")


def test_incomparable_values_are_false():
    assert not compare(None, ">", 1)
    assert not compare({"a": 1}, "<", 3)
    assert not compare("abc", ">=", 1)


def test_unknown_operator_is_false():
    assert not compare(1, "~=", 1)


def test_evaluate_condition_uses_context():
    context = _context(input={"amount": 120})
    assert evaluate_condition(
        Condition(field="amount", operator=">", value=100, next_step="big"), context
    )


def test_select_branch_first_match_wins():
    conditions = [
        Condition(field="score", operator=">=", value=80, next_step="A"),
        Condition(field="score", operator=">=", value=50, next_step="B"),
    ]
    assert select_branch(conditions, _context(input={"score": 90})).next_step == "A"
    assert select_branch(conditions, _context(input={"score": 60})).next_step == "B"
    assert select_branch(conditions, _context(input={"score": 10})) is None


def test_condition_accepts_camel_case_next_step():
    condition = Condition.model_validate(
        {"field": "x", "operator": "==", "value": 1, "nextStep": "end"}
    )
    assert condition.next_step == "end"
    assert condition.ends_run
