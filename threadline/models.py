"""Core domain models.

Compiled program (GameData and everything under it) is frozen after
compilation. GameState is the engine's mutable runtime record and is the only
thing that gets persisted.
Pydantic is used for validation and serialisation at every data boundary.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

VariableValue = Union[bool, int, float, str]

ThreadState = Literal["active", "locked", "ended"]

MessageKind = Literal[
    "text",
    "photo",
    "video",
    "location",
    "typing",
    "unlock_contact",
    "end_thread",
]


def parse_value(raw: str) -> VariableValue:
    """Convert a script literal to a typed variable value.

    Order: boolean keywords, integers, floats, quoted strings, bare text.
    """
    text = raw.strip()
    if text in ("true", "false"):
        return text == "true"
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        pass
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
        return text[1:-1]
    return text


# ── Passages (compile-time only) ────────────────────────

class Position(BaseModel):
    x: int
    y: int


class Size(BaseModel):
    w: int
    h: int


class Passage(BaseModel):
    """One block of raw script text between two `::` headers."""

    title: str
    tags: list[str] = Field(default_factory=list)
    content: str = ""
    line: int = 0  # header line number, 1-based
    position: Position | None = None
    size: Size | None = None


# ── Actions: closed tagged union, one model per kind ────

class _ActionBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    delay: int = Field(default=0, ge=0)  # ms, added on top of the global delay


class UnlockContact(_ActionBase):
    kind: Literal["unlock_contact"] = "unlock_contact"
    contact: str = Field(min_length=1)


class EndThread(_ActionBase):
    kind: Literal["end_thread"] = "end_thread"
    contact: str | None = None  # None = the thread that declared it


class DelayedMessage(_ActionBase):
    kind: Literal["delayed_message"] = "delayed_message"
    message: str = Field(min_length=1)
    contact: str | None = None


class SendPhoto(_ActionBase):
    kind: Literal["send_photo"] = "send_photo"
    file: str = Field(min_length=1)
    caption: str | None = None


class SendVideo(_ActionBase):
    kind: Literal["send_video"] = "send_video"
    file: str = Field(min_length=1)
    caption: str | None = None


class DropPin(_ActionBase):
    kind: Literal["drop_pin"] = "drop_pin"
    location: str = Field(min_length=1)
    description: str = ""
    map_file: str | None = None


class Call911(_ActionBase):
    kind: Literal["call_911"] = "call_911"


class OpenThread(_ActionBase):
    kind: Literal["open_thread"] = "open_thread"
    contact: str = Field(min_length=1)


class TriggerEliNeedsCode(_ActionBase):
    kind: Literal["trigger_eli_needs_code"] = "trigger_eli_needs_code"
    code: str | None = None


class TypingIndicator(_ActionBase):
    kind: Literal["typing_indicator"] = "typing_indicator"
    duration: int = Field(default=1000, ge=0)


class SetTypingDelay(_ActionBase):
    kind: Literal["set_typing_delay"] = "set_typing_delay"
    value: int = Field(ge=0)


class ShowNotification(_ActionBase):
    kind: Literal["show_notification"] = "show_notification"
    title: str = ""
    body: str = ""


class Vibrate(_ActionBase):
    kind: Literal["vibrate"] = "vibrate"
    pattern: list[int] = Field(default_factory=lambda: [200])

    @field_validator("pattern", mode="before")
    @classmethod
    def _split_pattern(cls, value):
        if isinstance(value, str):
            return [int(p) for p in value.replace(",", " ").split()]
        if isinstance(value, int):
            return [value]
        return value


class SetContactStatus(_ActionBase):
    kind: Literal["set_contact_status"] = "set_contact_status"
    contact: str = Field(min_length=1)
    status: str = ""


class TriggerEmergencyCall(_ActionBase):
    kind: Literal["trigger_emergency_call"] = "trigger_emergency_call"
    number: str = "911"


class SetVariable(_ActionBase):
    kind: Literal["set_variable"] = "set_variable"
    name: str = Field(min_length=1)
    value: VariableValue

    @field_validator("name", mode="before")
    @classmethod
    def _strip_sigil(cls, value):
        return value.strip().lstrip("$") if isinstance(value, str) else value

    @field_validator("value", mode="before")
    @classmethod
    def _typed_value(cls, value):
        return parse_value(value) if isinstance(value, str) else value


Action = Annotated[
    Union[
        UnlockContact,
        EndThread,
        DelayedMessage,
        SendPhoto,
        SendVideo,
        DropPin,
        Call911,
        OpenThread,
        TriggerEliNeedsCode,
        TypingIndicator,
        SetTypingDelay,
        ShowNotification,
        Vibrate,
        SetContactStatus,
        TriggerEmergencyCall,
        SetVariable,
    ],
    Field(discriminator="kind"),
]


# ── Compiled program ────────────────────────────────────

class Choice(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    target: str  # raw target reference, e.g. "Jamie-Round-2.1"
    embedded_action: Action | None = None


class Round(BaseModel):
    """One compiled passage: a single turn of a contact's conversation."""

    model_config = ConfigDict(frozen=True)

    key: str
    title: str = ""
    passage: str = ""  # conditionals pruned, choices/actions stripped
    choices: list[Choice] = Field(default_factory=list)
    actions: list[Action] = Field(default_factory=list)
    original_content: str = ""
    condition: str | None = None  # first (if:) expression, for ".0" rounds

    @property
    def is_conditional(self) -> bool:
        return self.key.endswith(".0")


class Contact(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    unlocked: bool = False
    rounds: dict[str, Round] = Field(default_factory=dict)
    position: Position | None = None
    size: Size | None = None


class StoryMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str = "Untitled Story"
    start_passage: str = ""
    format: str = "Harlowe"
    format_version: str = "3.3.9"


class GameData(BaseModel):
    model_config = ConfigDict(frozen=True)

    contacts: dict[str, Contact] = Field(default_factory=dict)
    variables: dict[str, VariableValue] = Field(default_factory=dict)
    metadata: StoryMetadata = Field(default_factory=StoryMetadata)


DiagnosticKind = Literal[
    "syntax",
    "metadata",
    "invalid_action",
    "unresolved_target",
    "condition",
    "structure",
]


class Diagnostic(BaseModel):
    kind: DiagnosticKind
    message: str
    line: int | None = None
    passage: str | None = None


class CompileResult(BaseModel):
    program: GameData
    errors: list[Diagnostic] = Field(default_factory=list)
    warnings: list[Diagnostic] = Field(default_factory=list)


# ── Runtime state ───────────────────────────────────────

class Location(BaseModel):
    name: str
    description: str = ""
    map_file: str | None = None


class Message(BaseModel):
    """A single entry in a contact's append-only message history."""

    id: str
    contact: str
    text: str
    timestamp: float  # epoch ms, or virtual ms under a ManualClock
    from_player: bool = False
    kind: MessageKind = "text"
    media_url: str | None = None
    caption: str | None = None
    location: Location | None = None
    unlocked_contact: str | None = None  # unlock_contact notices only
    read: bool = False


NotificationKind = Literal[
    "contact_unlocked",
    "notification",
    "vibrate",
    "emergency_call",
    "code_request",
]


class Notification(BaseModel):
    id: str
    kind: NotificationKind
    title: str = ""
    message: str = ""
    contact: str | None = None
    pattern: list[int] | None = None  # vibrate only
    timestamp: float = 0


class PendingEffect(BaseModel):
    """A deferred unlock or end-of-thread, waiting for its thread's next reply."""

    contact: str
    delay: int = 0


class GameState(BaseModel):
    """Everything the engine mutates. Serialised as one JSON document."""

    current_rounds: dict[str, str] = Field(default_factory=dict)
    variables: dict[str, VariableValue] = Field(default_factory=dict)
    thread_states: dict[str, ThreadState] = Field(default_factory=dict)
    message_history: dict[str, list[Message]] = Field(default_factory=dict)
    unlocked_contacts: set[str] = Field(default_factory=set)
    viewed_contacts: set[str] = Field(default_factory=set)
    typing_delay: int = Field(default=2000, ge=0)
    # Deferred effects, keyed by the thread whose next reply carries them
    pending_unlocks: dict[str, list[PendingEffect]] = Field(default_factory=dict)
    pending_end_threads: dict[str, list[PendingEffect]] = Field(default_factory=dict)
    notifications: list[Notification] = Field(default_factory=list)
    contact_statuses: dict[str, str] = Field(default_factory=dict)
    open_thread: str | None = None
    next_id: int = 1

    @field_serializer("unlocked_contacts", "viewed_contacts")
    def _sorted_names(self, names: set[str]) -> list[str]:
        return sorted(names)
