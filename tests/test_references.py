"""Tests for reference resolution inside node templates."""

import pytest
from jinja2 import UndefinedError
from nodechain.workflow.errors import WorkflowDefinitionError, WorkflowReferenceError
from nodechain.workflow.references import (
    find_references,
    is_single_reference,
    render_template,
    resolve_path,
)

SCOPE = {
    "input": {"price": [{"symbol": "BTCUSDT", "price": "64000.01"}], "count": 2, "empty": None},
    "context": {"telegramId": 12345},
    "state": {"last": {"price": "63000"}},
}


def test_single_reference_keeps_type():
    assert render_template("{{ input.count }}", SCOPE) == 2
    assert render_template("{{input.price}}", SCOPE) == SCOPE["input"]["price"]
    assert render_template("{{ context.telegramId }}", SCOPE) == 12345


def test_list_index_in_path():
    assert render_template("{{ input.price.0.symbol }}", SCOPE) == "BTCUSDT"


def test_whole_namespace_reference():
    assert render_template("{{ state }}", SCOPE) == SCOPE["state"]


def test_mixed_string_renders_text():
    text = render_template("BTC is {{ input.price.0.price }} (was {{ state.last.price }})", SCOPE)

    assert text == "BTC is 64000.01 (was 63000)"


def test_objects_in_text_render_as_json():
    assert render_template("data: {{ state.last }}", SCOPE) == 'data: {"price": "63000"}'


def test_nested_structures_are_rendered():
    template = {"chatId": "{{ context.telegramId }}", "lines": ["{{ input.count }}", "static"], "n": 5}

    assert render_template(template, SCOPE) == {"chatId": 12345, "lines": [2, "static"], "n": 5}


def test_values_without_references_are_untouched():
    assert render_template({"a": [1, True, None, "plain"]}, SCOPE) == {"a": [1, True, None, "plain"]}


@pytest.mark.parametrize("template, field, reference", [
    ("{{ input.missing }}", "input", "missing"),
    ("{{ input.empty }}", "input", "empty"),
    ("{{ context.email }}", "context", "email"),
    ("Hi {{ state.nothing.here }}", "state", "nothing.here"),
    ("Hi {{ context['email'] }}", "context", "email"),
    ("{{ input['price'][0]['missing'] }} now", "input", "price.0.missing"),
])
def test_missing_reference_raises(template, field, reference):
    """Missing keys and null values both count as missing."""
    with pytest.raises(WorkflowReferenceError) as exc:
        render_template(template, SCOPE)

    assert exc.value.field == field
    assert exc.value.reference == reference
    assert isinstance(exc.value.__cause__, KeyError)


def test_missing_state_points_at_upsert_state():
    with pytest.raises(WorkflowReferenceError) as exc:
        render_template("{{ state.counter }}", SCOPE)

    assert "upsert-state" in exc.value.human_readable_message


def test_dynamic_subscript_reports_its_namespace():
    scope = {"input": {}, "context": {"user": {"name": "ada"}, "key": "email"}, "state": {}}

    with pytest.raises(WorkflowReferenceError) as exc:
        render_template("Hi {{ context.user[context.key] }}", scope)

    assert exc.value.field == "context"
    assert exc.value.reference == "user"
    assert isinstance(exc.value.__cause__, UndefinedError)


def test_reference_against_null_input():
    with pytest.raises(WorkflowReferenceError):
        render_template("{{ input.x }}", {"input": None, "context": {}, "state": {}})


def test_invalid_template_syntax():
    with pytest.raises(WorkflowDefinitionError, match="Invalid template"):
        render_template("value {{ input.count ", SCOPE)


def test_resolve_path():
    assert resolve_path({"a": {"b": [10, 20]}}, "a.b.1") == 20
    assert resolve_path({"a": 1}, "") == {"a": 1}
    with pytest.raises(KeyError):
        resolve_path({"a": [1]}, "a.3")
    with pytest.raises(KeyError):
        resolve_path(None, "a")


def test_find_references_and_single_reference():
    template = {"a": "{{ input.price.0 }}", "b": ["x {{ context.telegramId }} {{ state.k }}"], "c": 1}

    assert find_references(template) == [("input", "price.0"), ("context", "telegramId"), ("state", "k")]
    assert find_references("{{ context['user'].name }} {{ input[\"price\"][1] }}") == [
        ("context", "user.name"), ("input", "price.1"),
    ]
    assert is_single_reference("{{ input.a }}")
    assert not is_single_reference("a {{ input.a }}")
    assert not is_single_reference(3)
