"""Delivery timing: typing indicator, reply, payloads and notices on virtual time."""

import pytest

from threadline import EventType, GameEngine, ManualClock, MemoryStore, Scheduler, compile_script
from threadline.engine import END_THREAD_TEXT, TYPING_INDICATOR_MS
from threadline.models import PendingEffect

STORY = """\
:: A-Round-1 [A initial_contact]
Hi
[[Ok|A-Round-2.1]]
[[Later|A-Round-2.2]]

:: A-Round-2.1 [A]
Bye
[Action: end_thread delay: 0]

:: A-Round-2.2 [A]
Give me a second.
[Action: delayed_message: Still there? delay: 500]
[Action: unlock_contact: B]
[[Yes|A-Round-3]]

:: A-Round-3 [A]
Good.

:: B-Round-1 [B]
Hey, A told me about you.
"""


def _texts(engine, contact):
    return [m.text for m in engine.get_contact_messages(contact)]


@pytest.fixture
def engine():
    program = compile_script(STORY).program
    return GameEngine(program, scheduler=Scheduler(ManualClock()), typing_delay=2000)


def test_reply_waits_for_typing_delay(engine):
    engine.submit_choice("A", 0)
    assert _texts(engine, "A") == ["Hi", "Ok"]

    engine.scheduler.advance(2000)
    assert _texts(engine, "A") == ["Hi", "Ok"]

    engine.scheduler.advance(TYPING_INDICATOR_MS)
    assert _texts(engine, "A") == ["Hi", "Ok", "Bye"]
    assert engine.get_contact_messages("A")[2].timestamp == 2400

    # End notice: reply (2400) + typing delay (2000)
    engine.scheduler.advance(2000)
    assert _texts(engine, "A") == ["Hi", "Ok", "Bye", END_THREAD_TEXT]
    assert engine.get_contact_messages("A")[3].timestamp == 4400
    assert engine.get_contact_state("A") == "ended"


def test_thread_stays_active_until_end_notice(engine):
    engine.submit_choice("A", 0)
    assert engine.get_contact_state("A") == "active"
    engine.scheduler.advance(4399)
    assert engine.get_contact_state("A") == "active"
    engine.scheduler.advance(1)
    assert engine.get_contact_state("A") == "ended"


def test_typing_indicator_is_emitted_not_stored(engine):
    typing = []
    engine.events.on(
        EventType.MESSAGE_ADDED,
        lambda e: typing.append(engine.scheduler.now()) if e.data["message"].kind == "typing" else None,
    )
    engine.submit_choice("A", 0)
    engine.scheduler.advance(3000)
    assert typing == [2000]
    assert all(m.kind != "typing" for m in engine.get_contact_messages("A"))


def test_payload_and_unlock_timing(engine):
    engine.submit_choice("A", 1)
    engine.scheduler.advance(2400)
    assert _texts(engine, "A")[-1] == "Give me a second."
    assert "B" not in engine.get_unlocked_contacts()

    # Unlock notice: reply (2400) + typing delay (2000)
    engine.scheduler.advance(2000)
    assert _texts(engine, "A")[-1] == "B is now available to chat with"
    assert engine.get_contact_messages("A")[-1].timestamp == 4400
    assert "B" in engine.get_unlocked_contacts()

    # Delayed message: reply (2400) + typing delay (2000) + its own delay (500)
    engine.scheduler.advance(499)
    assert _texts(engine, "A")[-1] == "B is now available to chat with"
    engine.scheduler.advance(1)
    assert _texts(engine, "A")[-1] == "Still there?"
    assert engine.get_contact_messages("A")[-1].timestamp == 4900


def test_pending_unlock_is_in_state_until_delivered(engine):
    engine.submit_choice("A", 1)
    assert engine.state.pending_unlocks == {"A": [PendingEffect(contact="B")]}
    assert engine.get_contact_state("B") == "locked"
    engine.scheduler.advance(2400)
    assert engine.state.pending_unlocks == {"A": [PendingEffect(contact="B")]}
    engine.scheduler.advance(2000)
    assert engine.state.pending_unlocks == {}
    assert engine.get_contact_state("B") == "active"


# ── deferred effects carry their own delay ─────────────────

OWN_DELAYS = """\
:: A-Round-1 [A initial_contact]
Hi
[[Unlock|A-Round-2.1]]
[[End|A-Round-2.2]]
[[Both|A-Round-2.3]]

:: A-Round-2.1 [A]
Meet B.
[Action: unlock_contact: B delay: 3000]

:: A-Round-2.2 [A]
Goodbye.
[Action: end_thread delay: 3000]

:: A-Round-2.3 [A]
One more thing.
[Action: end_thread delay: 0]
[Action: delayed_message: P.S. delay: 5000]

:: B-Round-1 [B]
Hey.
"""


@pytest.fixture
def delayed():
    program = compile_script(OWN_DELAYS).program
    return GameEngine(program, scheduler=Scheduler(ManualClock()), typing_delay=2000)


def test_unlock_waits_for_its_own_delay(delayed):
    delayed.submit_choice("A", 0)
    delayed.scheduler.advance(2400)
    assert [(m.kind, m.timestamp) for m in delayed.get_contact_messages("A")][-1] == ("text", 2400)
    assert "B" not in delayed.get_unlocked_contacts()

    # reply (2400) + typing delay (2000) + own delay (3000)
    delayed.scheduler.advance(4999)
    assert "B" not in delayed.get_unlocked_contacts()
    delayed.scheduler.advance(1)
    notice = delayed.get_contact_messages("A")[-1]
    assert (notice.kind, notice.timestamp) == ("unlock_contact", 7400)
    assert "B" in delayed.get_unlocked_contacts()


def test_end_thread_waits_for_its_own_delay(delayed):
    delayed.submit_choice("A", 1)
    delayed.scheduler.advance(2400)
    assert _texts(delayed, "A")[-1] == "Goodbye."
    assert delayed.get_contact_state("A") == "active"

    delayed.scheduler.advance(4999)
    assert delayed.get_contact_state("A") == "active"
    delayed.scheduler.advance(1)
    notice = delayed.get_contact_messages("A")[-1]
    assert (notice.text, notice.timestamp) == (END_THREAD_TEXT, 7400)
    assert delayed.get_contact_state("A") == "ended"


def test_end_notice_stays_behind_longer_payloads(delayed):
    delayed.submit_choice("A", 2)
    delayed.scheduler.advance(20_000)
    messages = delayed.get_contact_messages("A")
    assert [m.text for m in messages[-3:]] == ["One more thing.", "P.S.", END_THREAD_TEXT]
    assert messages[-2].timestamp == 9400
    assert messages[-1].timestamp == 9400


# ── the documented single-thread scenario ──────────────────

SCENARIO = """\
:: A-Round-1.0 [A initial_contact]
Hi
[[Ok|A-Round-2.1]]

:: A-Round-2.1 [A]
Bye
[Action: end_thread delay:0]
"""


def test_ok_bye_scenario():
    program = compile_script(SCENARIO).program
    engine = GameEngine(program, scheduler=Scheduler(ManualClock()), typing_delay=2000)
    assert engine.get_current_round("A") == "1.0"
    stream = []
    engine.events.on(EventType.MESSAGE_ADDED, lambda e: stream.append((e.data["message"], engine.scheduler.now())))

    assert engine.submit_choice("A", 0) is True
    engine.scheduler.advance(10_000)

    delivered = [(m.kind, m.text, m.from_player, at) for m, at in stream]
    assert delivered == [
        ("text", "Ok", True, 0),
        ("typing", "", False, 2000),
        ("text", "Bye", False, 2400),
        ("end_thread", END_THREAD_TEXT, False, 4400),
    ]
    assert engine.get_contact_state("A") == "ended"


def test_zero_delay_is_synchronous():
    program = compile_script(STORY).program
    engine = GameEngine(program, scheduler=Scheduler(ManualClock()), typing_delay=0)
    engine.submit_choice("A", 0)
    assert _texts(engine, "A") == ["Hi", "Ok", "Bye", END_THREAD_TEXT]
    assert engine.get_contact_messages("A")[2].timestamp == 0


def test_choices_while_pending_keep_lane_order(engine):
    """A second choice made before the first reply lands is queued behind it."""
    engine.submit_choice("A", 1)
    assert engine.submit_choice("A", 0) is True
    engine.scheduler.advance(10_000)
    texts = _texts(engine, "A")
    assert texts.index("Give me a second.") < texts.index("Good.")
    assert texts[:4] == ["Hi", "Later", "Yes", "Give me a second."]


def test_reset_cancels_scheduled_deliveries(engine):
    engine.submit_choice("A", 1)
    assert engine.scheduler.pending("A") > 0

    engine.reset_game()
    assert engine.scheduler.pending() == 0
    engine.scheduler.advance(10_000)
    assert _texts(engine, "A") == ["Hi"]
    assert engine.get_unlocked_contacts() == ["A"]


def test_load_script_cancels_scheduled_deliveries(engine):
    engine.submit_choice("A", 0)
    engine.load_script(STORY)
    engine.scheduler.advance(10_000)
    assert _texts(engine, "A") == ["Hi", "Ok"]
    assert engine.get_contact_state("A") == "active"


def test_stale_callback_is_a_no_op(engine):
    """A delivery captured before a reset does nothing if it still fires."""
    engine.submit_choice("A", 0)
    stale = [task.callback for task in engine.scheduler._heap]
    engine.reset_game()
    for callback in stale:
        callback()
    assert _texts(engine, "A") == ["Hi"]
    assert engine.get_contact_state("A") == "active"


def test_deliveries_are_saved():
    store = MemoryStore()
    program = compile_script(STORY).program
    engine = GameEngine(program, store=store, scheduler=Scheduler(ManualClock()), typing_delay=2000)
    engine.submit_choice("A", 0)
    assert "Bye" not in store.document
    engine.scheduler.advance(2400)
    assert "Bye" in store.document
