"""Game engine: the interpreter that walks a compiled GameData.

Owns one GameState. Player choices and script actions mutate it; delivery of
contact messages goes through the Scheduler; every visible change is emitted on
the EventBus; state is saved to the StateStore after each command.

Delivery timeline for a choice made at T0 with global typing delay G:

    T0               player message
    T0+G             typing indicator        (only when G > 0)
    T0+G+400         reply text              (T0 when G == 0)
    reply+G+D        unlock notice or payload of each action with its own delay D
    reply+G+D, last  end-of-thread notice    (never before anything above)

unlock_contact and end_thread never take effect on the spot: they are stored
as pending flags and ride on the next reply of the thread that declared them.
Deliveries for one contact share a scheduler lane and so never reorder.

Conditional rounds (keys ending ".0") are only entered while their first (if:)
condition holds. A choice leading into a closed one ends the thread, and
set_variable reopens an ended or locked thread once the condition turns true.
"""

from __future__ import annotations

import logging
from functools import partial
from typing import Callable

from threadline.compiler import (
    ACTION_KINDS,
    ConditionError,
    compile_script,
    evaluate_condition,
    render_round,
    resolve_target,
    round_sort_key,
)
from threadline.events import EventBus, EventType
from threadline.models import (
    Action,
    Choice,
    CompileResult,
    Contact,
    GameData,
    GameState,
    Location,
    Message,
    MessageKind,
    Notification,
    NotificationKind,
    PendingEffect,
    Round,
    ThreadState,
    VariableValue,
)
from threadline.persistence import MemoryStore, StateStore
from threadline.scheduler import Clock, ManualClock, Scheduler, WallClock

logger = logging.getLogger(__name__)

DEFAULT_TYPING_DELAY = 2000
TYPING_INDICATOR_MS = 400
END_THREAD_TEXT = "The Conversation Has Ended"
UNLOCK_TEXT = "{contact} is now available to chat with"
IMAGE_ROOT = "/assets/images/"
VIDEO_ROOT = "/assets/videos/"

# Applied on the spot when their delay is 0, otherwise delivered like payloads
IMMEDIATE_KINDS = frozenset({"set_typing_delay", "set_variable", "set_contact_status", "open_thread"})


class GameEngine:
    def __init__(
        self,
        game_data: GameData,
        *,
        store: StateStore | None = None,
        scheduler: Scheduler | None = None,
        events: EventBus | None = None,
        typing_delay: int = DEFAULT_TYPING_DELAY,
        clock: Clock | None = None,
    ) -> None:
        self._data = game_data
        self._store: StateStore = store if store is not None else MemoryStore()
        self.scheduler = scheduler or Scheduler()
        self.events = events or EventBus()
        # Message timestamps: wall time, unless the scheduler runs on virtual time
        if clock is None:
            clock = self.scheduler.clock if isinstance(self.scheduler.clock, ManualClock) else WallClock()
        self._clock = clock
        self._default_typing_delay = typing_delay
        self._generation = 0
        self._payloads: dict[str, list[Action]] = {}
        # ids of pending effects already scheduled behind a reply
        self._claimed: set[int] = set()
        self._handlers: dict[str, Callable[[Action, str | None], None]] = {
            "unlock_contact": self._handle_unlock,
            "end_thread": self._handle_end_thread,
        }
        for kind in ACTION_KINDS:
            self._handlers.setdefault(
                kind, self._handle_immediate if kind in IMMEDIATE_KINDS else self._handle_payload
            )
        self._state = self._initial_state()
        self._load_state()

    # ── Read-only accessors ─────────────────────────────

    @property
    def game_data(self) -> GameData:
        return self._data

    @property
    def state(self) -> GameState:
        """The live state object. Treat as read-only."""
        return self._state

    def get_contact_messages(self, contact: str) -> list[Message]:
        return list(self._state.message_history.get(contact, []))

    def get_unlocked_contacts(self) -> list[str]:
        """Unlocked contacts in script order, then any unknown to the program."""
        unlocked = self._state.unlocked_contacts
        known = [name for name in self._data.contacts if name in unlocked]
        return known + sorted(unlocked - set(known))

    def get_contact_state(self, contact: str) -> ThreadState:
        default: ThreadState = "active" if contact in self._state.unlocked_contacts else "locked"
        return self._state.thread_states.get(contact, default)

    def get_current_round(self, contact: str) -> str | None:
        return self._state.current_rounds.get(contact)

    def get_current_choices(self, contact: str) -> list[Choice]:
        """Choices of the contact's current round, rendered against live variables."""
        if contact not in self._state.unlocked_contacts or self.get_contact_state(contact) != "active":
            return []
        round_ = self._current_round(contact)
        if round_ is None:
            return []
        return render_round(round_, self._state.variables).choices

    def get_variable(self, name: str) -> VariableValue | None:
        return self._state.variables.get(name)

    def get_global_typing_delay(self) -> int:
        return self._state.typing_delay

    def get_contact_status(self, contact: str) -> str | None:
        return self._state.contact_statuses.get(contact)

    def get_notifications(self) -> list[Notification]:
        return list(self._state.notifications)

    # ── Commands ────────────────────────────────────────

    def submit_choice(self, contact: str, index: int) -> bool:
        """Play choice `index` of the contact's current round.

        Returns False, without touching state, if the contact is unknown or
        locked, its thread is not active, it has no current round, or the index
        is out of range.
        """
        contact_data = self._data.contacts.get(contact)
        if contact_data is None or contact not in self._state.unlocked_contacts:
            return False
        if self.get_contact_state(contact) != "active":
            return False
        round_ = self._current_round(contact)
        if round_ is None:
            return False
        choices = render_round(round_, self._state.variables).choices
        if not 0 <= index < len(choices):
            return False

        choice = choices[index]
        self._add_message(contact, choice.text, from_player=True)
        if choice.embedded_action is not None:
            self._run_actions([choice.embedded_action], contact)

        target_key = resolve_target(contact_data, choice.target, choice.text)
        if target_key is None:
            logger.info("Choice %r for %s has no target round; ending thread", choice.target, contact)
        elif not _reachable(contact_data.rounds[target_key], self._state.variables):
            # set_variable reopens the thread once the condition holds
            logger.info("Round %s of %s is not reachable yet; ending thread", target_key, contact)
            target_key = None
        if target_key is None:
            self._flush_payloads(contact, self.scheduler.now())
            self._set_thread_state(contact, "ended")
        else:
            target = render_round(contact_data.rounds[target_key], self._state.variables)
            self._run_actions(target.actions, contact)
            self._state.current_rounds[contact] = target_key
            self._schedule_reply(contact, target.passage)

        self._save()
        self.scheduler.run_due()
        return True

    def execute_actions(self, actions: list[Action], contact: str | None = None) -> None:
        """Run actions outside a choice. Payloads are timed from now."""
        self._run_actions(actions, contact)
        now = self.scheduler.now()
        for lane in list(self._payloads):
            self._flush_payloads(lane, now)
        self._save()
        self.scheduler.run_due()

    def set_variable(self, name: str, value: VariableValue) -> None:
        self._set_variable(name, value)
        self._save()
        self.scheduler.run_due()

    def set_global_typing_delay(self, delay: int) -> None:
        self._state.typing_delay = max(0, int(delay))
        self._save()

    def mark_contact_viewed(self, contact: str) -> None:
        self._state.viewed_contacts.add(contact)
        for message in self._state.message_history.get(contact, []):
            message.read = True
        self._save()

    def clear_notifications(self) -> None:
        self._state.notifications = []
        self._save()

    def reset_game(self) -> None:
        """Cancel everything in flight and start over from the compiled program."""
        self._invalidate()
        self._state = self._initial_state()
        self._store.clear()
        for name in self.get_unlocked_contacts():
            self.events.emit(EventType.CONTACT_UNLOCKED, contact=name)
        for messages in self._state.message_history.values():
            for message in messages:
                self.events.emit(EventType.MESSAGE_ADDED, message=message)

    def load_script(self, text: str | bytes) -> CompileResult:
        """Compile and bind a new script. Runtime variables win over new defaults."""
        result = compile_script(text)
        self._invalidate()
        self._data = result.program
        if not self._state.unlocked_contacts and not any(self._state.message_history.values()):
            variables = self._state.variables
            self._state = self._initial_state()
            self._state.variables.update(variables)
        else:
            self._state.variables = {**result.program.variables, **self._state.variables}
        self._save()
        logger.info(
            "Loaded script %r: %d contacts, %d errors, %d warnings",
            result.program.metadata.title,
            len(result.program.contacts),
            len(result.errors),
            len(result.warnings),
        )
        return result

    # ── State lifecycle ─────────────────────────────────

    def _initial_state(self) -> GameState:
        state = GameState(
            variables=dict(self._data.variables),
            typing_delay=self._default_typing_delay,
        )
        seeded = False
        for name, contact in self._data.contacts.items():
            if not contact.unlocked:
                state.thread_states[name] = "locked"
                continue
            state.unlocked_contacts.add(name)
            key = _entry_key(contact, state.variables)
            if key is None:
                state.thread_states[name] = "locked"
                continue
            state.thread_states[name] = "active"
            state.current_rounds[name] = key
            if not seeded:
                seeded = True
                text = render_round(contact.rounds[key], state.variables).passage
                if text:
                    state.message_history[name] = [self._new_message(state, name, text)]
        return state

    def _load_state(self) -> None:
        raw = self._store.load()
        if raw is None:
            return
        try:
            saved = GameState.model_validate_json(raw)
        except ValueError:
            logger.warning("Saved game state is unreadable; starting fresh", exc_info=True)
            return
        saved.variables = {**self._state.variables, **saved.variables}
        self._state = saved

    def _save(self) -> None:
        try:
            self._store.save(self._state.model_dump_json())
        except OSError:
            logger.warning("Failed to save game state", exc_info=True)

    def _invalidate(self) -> None:
        """Cancel scheduled deliveries and make any stale callback a no-op."""
        self.scheduler.cancel_all()
        self._generation += 1
        self._payloads.clear()
        self._claimed.clear()

    def _guard(self, callback: Callable[[], None]) -> Callable[[], None]:
        generation = self._generation

        def run() -> None:
            if generation != self._generation:
                logger.debug("Dropping stale delivery from generation %d", generation)
                return
            callback()
            self._save()

        return run

    # ── Round resolution ────────────────────────────────

    def _current_round(self, contact: str) -> Round | None:
        key = self._state.current_rounds.get(contact)
        contact_data = self._data.contacts.get(contact)
        if key is None or contact_data is None:
            return None
        return contact_data.rounds.get(key)

    # ── Actions ─────────────────────────────────────────

    def _run_actions(self, actions: list[Action], contact: str | None) -> None:
        for action in actions:
            kind = getattr(action, "kind", None)
            handler = self._handlers.get(kind)
            if handler is None:
                logger.warning("No handler for action kind %r; skipped", kind)
                continue
            self.events.emit(EventType.ACTION_EXECUTED, action=action, contact=contact)
            try:
                handler(action, contact)
            except Exception:
                logger.exception("Action %s failed", kind)

    def _lane_for(self, contact: str | None) -> str | None:
        """Thread whose reply an action rides on: the declaring one, else the open one."""
        if contact:
            return contact
        unlocked = self.get_unlocked_contacts()
        return self._state.open_thread or (unlocked[0] if unlocked else None)

    def _handle_unlock(self, action: Action, contact: str | None) -> None:
        lane = self._lane_for(contact) or action.contact
        self._state.pending_unlocks.setdefault(lane, []).append(
            PendingEffect(contact=action.contact, delay=action.delay)
        )

    def _handle_end_thread(self, action: Action, contact: str | None) -> None:
        target = action.contact or contact
        if target is None:
            logger.warning("end_thread without a thread to end; skipped")
            return
        self._state.pending_end_threads.setdefault(contact or target, []).append(
            PendingEffect(contact=target, delay=action.delay)
        )

    def _handle_immediate(self, action: Action, contact: str | None) -> None:
        if action.delay:
            self._handle_payload(action, contact)
        else:
            self._apply(action, contact)

    def _handle_payload(self, action: Action, contact: str | None) -> None:
        lane = self._lane_for(contact)
        if lane is None:
            logger.warning("No thread to deliver %s into; skipped", action.kind)
            return
        self._payloads.setdefault(lane, []).append(action)

    def _flush_payloads(
        self,
        lane: str,
        base: float,
        unlocks: list[PendingEffect] | None = None,
    ) -> None:
        """Schedule the lane's payloads, and any unlock notices, at base + G + D.

        Deliveries go out in order of their own delay, unlock notices first on ties.
        """
        deliveries = [(effect.delay, partial(self._deliver_unlock, lane, effect)) for effect in unlocks or []]
        deliveries += [
            (action.delay, partial(self._apply, action, lane)) for action in self._payloads.pop(lane, [])
        ]
        delay = self._state.typing_delay
        for own_delay, callback in sorted(deliveries, key=lambda item: item[0]):
            self.scheduler.schedule_at(lane, base + delay + own_delay, self._guard(callback))

    def _apply(self, action: Action, lane: str | None) -> None:
        """Deliver an action's effect now."""
        kind = action.kind
        if kind == "set_typing_delay":
            self._state.typing_delay = action.value
        elif kind == "set_variable":
            self._set_variable(action.name, action.value)
        elif kind == "set_contact_status":
            self._state.contact_statuses[action.contact] = action.status
        elif kind == "open_thread":
            self._state.open_thread = action.contact
        elif kind == "delayed_message":
            self._add_message(action.contact or lane, action.message)
        elif kind == "send_photo":
            self._add_message(
                lane, action.caption or "", kind="photo",
                media_url=IMAGE_ROOT + action.file, caption=action.caption,
            )
        elif kind == "send_video":
            self._add_message(
                lane, action.caption or "", kind="video",
                media_url=VIDEO_ROOT + action.file, caption=action.caption,
            )
        elif kind == "drop_pin":
            self._add_message(
                lane, action.description, kind="location",
                location=Location(
                    name=action.location,
                    description=action.description,
                    map_file=IMAGE_ROOT + action.map_file if action.map_file else None,
                ),
            )
        elif kind == "typing_indicator":
            self._emit_typing(lane)
        elif kind == "show_notification":
            self._notify("notification", action.title, action.body, contact=lane)
        elif kind == "vibrate":
            self._notify("vibrate", "", "", contact=lane, pattern=list(action.pattern))
        elif kind == "call_911":
            self._notify("emergency_call", "Emergency Call", "911", contact=lane)
        elif kind == "trigger_emergency_call":
            self._notify("emergency_call", "Emergency Call", action.number, contact=lane)
        elif kind == "trigger_eli_needs_code":
            self._notify("code_request", "Code Needed", action.code or "", contact=lane)
        else:
            logger.warning("Action kind %r has no delivery; skipped", kind)

    # ── Variables and conditional rounds ────────────────

    def _set_variable(self, name: str, value: VariableValue) -> None:
        previous = dict(self._state.variables)
        self._state.variables[name] = value
        self.events.emit(EventType.VARIABLE_CHANGED, name=name, value=value)
        self._reopen_conditional_rounds(previous)

    def _reopen_conditional_rounds(self, previous: dict[str, VariableValue]) -> None:
        for name, contact in self._data.contacts.items():
            if self.get_contact_state(name) == "active":
                continue
            for key in sorted(contact.rounds, key=round_sort_key):
                round_ = contact.rounds[key]
                if not round_.is_conditional or not round_.condition:
                    continue
                if _holds(round_.condition, self._state.variables) and not _holds(round_.condition, previous):
                    self._reopen(name, key)
                    break

    def _reopen(self, contact: str, key: str) -> None:
        logger.debug("Conditional round %s of %s now reachable", key, contact)
        if contact not in self._state.unlocked_contacts:
            self._state.unlocked_contacts.add(contact)
            self._state.message_history.setdefault(contact, [])
            self.events.emit(EventType.CONTACT_UNLOCKED, contact=contact)
        self._state.current_rounds[contact] = key
        self._set_thread_state(contact, "active")
        round_ = render_round(self._data.contacts[contact].rounds[key], self._state.variables)
        self._run_actions(round_.actions, contact)
        self._schedule_reply(contact, round_.passage)

    # ── Delivery ────────────────────────────────────────

    def _schedule_reply(self, contact: str, text: str) -> None:
        delay = self._state.typing_delay
        if delay > 0:
            self.scheduler.schedule(contact, delay, self._guard(partial(self._emit_typing, contact)))
            reply_delay = delay + TYPING_INDICATOR_MS
        else:
            reply_delay = 0
        reply = self.scheduler.schedule(
            contact, reply_delay, self._guard(partial(self._deliver_reply, contact, text))
        )
        self._flush_payloads(contact, reply.due, self._claim(self._state.pending_unlocks, contact))
        # The lane FIFO holds each end notice behind everything scheduled above
        for effect in self._claim(self._state.pending_end_threads, contact):
            self.scheduler.schedule_at(
                contact, reply.due + delay + effect.delay,
                self._guard(partial(self._deliver_end, contact, effect)),
            )

    def _claim(self, pending: dict[str, list[PendingEffect]], lane: str) -> list[PendingEffect]:
        """Pending effects of lane not yet scheduled behind an earlier reply."""
        effects = [e for e in pending.get(lane, []) if id(e) not in self._claimed]
        self._claimed.update(id(e) for e in effects)
        return effects

    def _release(self, pending: dict[str, list[PendingEffect]], lane: str, effect: PendingEffect) -> None:
        effects = pending.get(lane, [])
        for i, candidate in enumerate(effects):
            if candidate is effect:
                del effects[i]
                break
        if not effects:
            pending.pop(lane, None)
        self._claimed.discard(id(effect))

    def _deliver_reply(self, contact: str, text: str) -> None:
        if text:
            self._add_message(contact, text)

    def _deliver_unlock(self, lane: str, effect: PendingEffect) -> None:
        self._release(self._state.pending_unlocks, lane, effect)
        self._unlock(effect.contact, notice_thread=lane)

    def _deliver_end(self, lane: str, effect: PendingEffect) -> None:
        self._release(self._state.pending_end_threads, lane, effect)
        self._add_message(effect.contact, END_THREAD_TEXT, kind="end_thread")
        self._set_thread_state(effect.contact, "ended")

    def _unlock(self, name: str, notice_thread: str | None) -> None:
        if name in self._state.unlocked_contacts:
            return
        self._state.unlocked_contacts.add(name)
        self._state.message_history.setdefault(name, [])
        if notice_thread is not None:
            self._add_message(
                notice_thread, UNLOCK_TEXT.format(contact=name),
                kind="unlock_contact", unlocked_contact=name,
            )
        self._notify("contact_unlocked", "New Contact", UNLOCK_TEXT.format(contact=name), contact=name)
        self.events.emit(EventType.CONTACT_UNLOCKED, contact=name)

        contact = self._data.contacts.get(name)
        if contact is None:
            logger.warning("Unlocked %r, which has no rounds in this script", name)
            return
        if name not in self._state.current_rounds:
            key = _entry_key(contact, self._state.variables)
            if key is None:
                # Stays locked until a conditional round opens it
                logger.debug("%s has no reachable round yet", name)
                return
            self._state.current_rounds[name] = key
            opening = render_round(contact.rounds[key], self._state.variables).passage
            if opening:
                self._add_message(name, opening)
        if self.get_contact_state(name) == "locked":
            self._set_thread_state(name, "active")

    def _set_thread_state(self, contact: str, state: ThreadState) -> None:
        if self._state.thread_states.get(contact) == state:
            return
        self._state.thread_states[contact] = state
        self.events.emit(EventType.THREAD_STATE_CHANGED, contact=contact, state=state)

    def _emit_typing(self, contact: str) -> None:
        message = Message(
            id=f"typing_{contact}",
            contact=contact,
            text="",
            timestamp=self._clock.now(),
            kind="typing",
        )
        self.events.emit(EventType.MESSAGE_ADDED, message=message)

    def _new_message(self, state: GameState, contact: str, text: str, **fields) -> Message:
        message = Message(
            id=f"msg_{state.next_id}",
            contact=contact,
            text=text,
            timestamp=self._clock.now(),
            **fields,
        )
        state.next_id += 1
        return message

    def _add_message(
        self,
        contact: str,
        text: str,
        from_player: bool = False,
        kind: MessageKind = "text",
        **fields,
    ) -> Message:
        message = self._new_message(
            self._state, contact, text, from_player=from_player, kind=kind, **fields
        )
        self._state.message_history.setdefault(contact, []).append(message)
        self.events.emit(EventType.MESSAGE_ADDED, message=message)
        return message

    def _notify(
        self,
        kind: NotificationKind,
        title: str,
        message: str,
        contact: str | None = None,
        pattern: list[int] | None = None,
    ) -> None:
        notification = Notification(
            id=f"note_{self._state.next_id}",
            kind=kind,
            title=title,
            message=message,
            contact=contact,
            pattern=pattern,
            timestamp=self._clock.now(),
        )
        self._state.next_id += 1
        self._state.notifications.append(notification)
        self.events.emit(EventType.NOTIFICATION_ADDED, notification=notification)


def _holds(condition: str, variables: dict[str, VariableValue]) -> bool:
    try:
        return evaluate_condition(condition, variables)
    except ConditionError:
        return False


def _reachable(round_: Round, variables: dict[str, VariableValue]) -> bool:
    """A ".0" round is only open while its condition holds."""
    if not round_.is_conditional or not round_.condition:
        return True
    return _holds(round_.condition, variables)


def _entry_key(contact: Contact, variables: dict[str, VariableValue]) -> str | None:
    """First round a thread can open on."""
    for key in sorted(contact.rounds, key=round_sort_key):
        if _reachable(contact.rounds[key], variables):
            return key
    return None
