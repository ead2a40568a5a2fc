"""Tests for the [Action: ...] and [[choice]] grammar."""

import pytest

from threadline.compiler import ACTION_KINDS, DiagnosticLog, extract_parts, parse_action
from threadline.compiler.grammar import parse_params, scan_links, split_delay


def _action(body):
    log = DiagnosticLog()
    action = parse_action(body, log)
    return action, log


# ── parameters ─────────────────────────────────────────────


def test_split_delay():
    assert split_delay("Are you there? delay: 3000") == (3000, "Are you there?")
    assert split_delay("delay: 250, Maya") == (250, "Maya")
    assert split_delay("no delay token") == (0, "no delay token")


def test_positional_last_field_is_greedy():
    fields = parse_params("send_photo", "beach.jpg, Look at this, wow")
    assert fields == {"file": "beach.jpg", "caption": "Look at this, wow"}


def test_named_params_with_aliases():
    fields = parse_params("delayed_message", 'text: "See you soon" character: Maya')
    assert fields == {"message": "See you soon", "contact": "Maya"}


def test_colon_in_positional_text_is_not_a_name():
    assert parse_params("delayed_message", "Note: call me") == {"message": "Note: call me"}


@pytest.mark.parametrize(
    "kind, params, expected",
    [
        ("delayed_message", "Check the text: it's from Sarah", {"message": "Check the text: it's from Sarah"}),
        (
            "show_notification",
            "Battery low, The message: plug in now",
            {"title": "Battery low", "body": "The message: plug in now"},
        ),
        (
            "drop_pin",
            "Miller's Lake, Check the map: north lot",
            {"location": "Miller's Lake", "description": "Check the map: north lot"},
        ),
    ],
)
def test_key_words_inside_positional_text(kind, params, expected):
    assert parse_params(kind, params) == expected


def test_unquoted_named_values_keep_spaces():
    fields = parse_params("drop_pin", "location: Miller's Lake description: North parking lot")
    assert fields == {"location": "Miller's Lake", "description": "North parking lot"}
    assert parse_params("unlock_contact", "contactName: Maya Delgado") == {"contact": "Maya Delgado"}


def test_positional_message_with_key_word_compiles_cleanly():
    action, log = _action("delayed_message: Check the text: it's from Sarah delay: 1000")
    assert action.message == "Check the text: it's from Sarah"
    assert action.delay == 1000
    assert log.warnings == []


def test_every_kind_has_a_model():
    log = DiagnosticLog()
    assert "call_911" in ACTION_KINDS
    assert len(ACTION_KINDS) == 16
    assert parse_action("call_911", log).kind == "call_911"


# ── actions ────────────────────────────────────────────────


def test_unlock_contact():
    action, log = _action("unlock_contact: Maya")
    assert action.kind == "unlock_contact"
    assert action.contact == "Maya"
    assert action.delay == 0
    assert log.warnings == []


def test_zero_parameter_action_with_delay():
    action, _ = _action("end_thread delay: 500")
    assert action.kind == "end_thread"
    assert action.contact is None
    assert action.delay == 500


def test_delayed_message():
    action, _ = _action("delayed_message: Are you there? delay: 3000")
    assert action.message == "Are you there?"
    assert action.delay == 3000


def test_send_photo_named():
    action, _ = _action('send_photo: file: "beach.jpg" caption: "Look!"')
    assert action.file == "beach.jpg"
    assert action.caption == "Look!"


def test_drop_pin_named():
    action, _ = _action('drop_pin: location: "Miller\'s Lake" description: "North lot" map_file: "lake.png"')
    assert action.location == "Miller's Lake"
    assert action.description == "North lot"
    assert action.map_file == "lake.png"


def test_show_notification_positional():
    action, _ = _action("show_notification: Alert, Something happened")
    assert action.title == "Alert"
    assert action.body == "Something happened"


def test_vibrate_pattern():
    action, _ = _action("vibrate: 200 100 200")
    assert action.pattern == [200, 100, 200]


def test_emergency_call_default_number():
    action, _ = _action("trigger_emergency_call")
    assert action.number == "911"


def test_typing_indicator_duration():
    action, _ = _action("typing_indicator: 1500")
    assert action.duration == 1500


def test_set_typing_delay_value():
    action, _ = _action("set_typing_delay: 800")
    assert action.value == 800
    assert action.delay == 0


def test_set_typing_delay_from_delay_token():
    """With only a delay token, the delay is the new typing delay."""
    action, _ = _action("set_typing_delay delay: 500")
    assert action.value == 500
    assert action.delay == 0


@pytest.mark.parametrize(
    "body, name, value",
    [
        ("set_variable: $met_maya to true", "met_maya", True),
        ('set_variable: name: "trust" value: "3"', "trust", 3),
        ("set_variable: $mood, angry", "mood", "angry"),
    ],
)
def test_set_variable_forms(body, name, value):
    action, _ = _action(body)
    assert action.name == name
    assert action.value == value


def test_unknown_kind_is_dropped_with_warning():
    action, log = _action("dance: now")
    assert action is None
    assert [w.kind for w in log.warnings] == ["invalid_action"]
    assert "dance" in log.warnings[0].message


def test_missing_required_param_is_dropped_with_warning():
    action, log = _action("unlock_contact")
    assert action is None
    assert [w.kind for w in log.warnings] == ["invalid_action"]


def test_bad_int_param_is_dropped():
    action, log = _action("typing_indicator: soon")
    assert action is None
    assert len(log.warnings) == 1


# ── choices ────────────────────────────────────────────────


def test_scan_links_allows_single_brackets():
    spans = scan_links("a [[Sure [Action: call_911]|B-Round-2]] b")
    assert len(spans) == 1
    assert spans[0][2] == "Sure [Action: call_911]|B-Round-2"


def test_scan_links_unterminated():
    assert scan_links("[[never closed") == []


def test_extract_parts():
    text = (
        "Hello there\n"
        "[[Yes|A-Round-2.1]]\n"
        "[[No|A-Round-2.2]]\n"
        "[Action: unlock_contact: Maya]"
    )
    reply, choices, actions = extract_parts(text, DiagnosticLog())
    assert reply == "Hello there"
    assert [(c.text, c.target) for c in choices] == [("Yes", "A-Round-2.1"), ("No", "A-Round-2.2")]
    assert [a.kind for a in actions] == ["unlock_contact"]


def test_choice_with_embedded_action():
    _, choices, actions = extract_parts(
        "[[Sure [Action: unlock_contact: Maya]|A-Round-3.1]]", DiagnosticLog()
    )
    assert actions == []
    assert choices[0].text == "Sure"
    assert choices[0].target == "A-Round-3.1"
    assert choices[0].embedded_action.contact == "Maya"


def test_choice_without_target_uses_text():
    _, choices, _ = extract_parts("[[Just text]]", DiagnosticLog())
    assert choices[0].text == "Just text"
    assert choices[0].target == "Just text"


def test_choice_without_text_is_dropped():
    log = DiagnosticLog()
    _, choices, _ = extract_parts("[[|A-Round-2]]", log)
    assert choices == []
    assert [w.kind for w in log.warnings] == ["syntax"]


def test_inline_action_is_removed_from_text():
    reply, _, actions = extract_parts("Wait [Action: vibrate: 100] what?", DiagnosticLog())
    assert reply == "Wait  what?"
    assert actions[0].pattern == [100]
