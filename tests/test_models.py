"""Tests for model validation and the action union."""

import pytest
from pydantic import TypeAdapter, ValidationError

from threadline.models import Action, Message, Round, SetVariable, Vibrate


def test_action_union_discriminates_on_kind():
    adapter = TypeAdapter(Action)
    action = adapter.validate_python({"kind": "unlock_contact", "contact": "Maya"})
    assert type(action).__name__ == "UnlockContact"
    with pytest.raises(ValidationError):
        adapter.validate_python({"kind": "teleport"})


def test_negative_delay_rejected():
    with pytest.raises(ValidationError):
        TypeAdapter(Action).validate_python({"kind": "call_911", "delay": -1})


def test_actions_are_frozen():
    action = Vibrate(pattern=[100])
    with pytest.raises(ValidationError):
        action.delay = 5


def test_vibrate_pattern_forms():
    assert Vibrate(pattern="100, 200").pattern == [100, 200]
    assert Vibrate(pattern=300).pattern == [300]
    assert Vibrate().pattern == [200]


def test_set_variable_normalises_name_and_value():
    action = SetVariable(name=" $met ", value="true")
    assert action.name == "met"
    assert action.value is True
    assert SetVariable(name="n", value=2).value == 2


def test_round_is_conditional():
    assert Round(key="3.0").is_conditional
    assert not Round(key="3.1").is_conditional
    assert not Round(key="1").is_conditional


def test_message_defaults():
    message = Message(id="msg_1", contact="A", text="hi", timestamp=0)
    assert message.kind == "text"
    assert message.from_player is False
    assert message.read is False
