"""Choice and action grammar.

Choices:
  [[Display text|Jamie-Round-2.1]]
  [[Display text]]                      target defaults to the display text
  [[Sure [Action: unlock_contact: Maya]|Jamie-Round-3.1]]
                                        embedded action, removed from the text

Actions:
  [Action: kind: params]
  [Action: kind]                        zero-parameter actions
  [Action: kind delay: 500]

A `delay: <int>` token is stripped from the parameter string first. What is
left is read with the kind's parameter table in one of three shapes:

  named       file: "beach.jpg" caption: "Look!"   (must open with a known key)
  positional  beach.jpg, Look!          (last field takes the remainder)
  bare        Maya Delgado

Unknown kinds and parameters that fail validation are dropped with a warning.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from pydantic import TypeAdapter, ValidationError

from threadline.models import Action, Choice

from .diagnostics import DiagnosticLog

logger = logging.getLogger(__name__)

ACTION_RE = re.compile(r"\[Action:\s*([^\[\]]*)\]")
ACTION_HEAD_RE = re.compile(r"^\s*(\w+)\s*:?\s*(.*)$", re.DOTALL)
DELAY_RE = re.compile(r"\bdelay\s*:\s*(\d+)\s*,?")
KEY_RE = re.compile(r"\s*(\w+)\s*:\s*")
NEXT_KEY_RE = re.compile(r"[\s,](\w+)\s*:")
SEPARATOR_RE = re.compile(r"[\s,]*")
SET_FORM_RE = re.compile(r"^\$?(\w+)\s+to\s+(.+)$", re.DOTALL)

_ACTION_ADAPTER: TypeAdapter[Action] = TypeAdapter(Action)


@dataclass(frozen=True)
class ParamSpec:
    positional: tuple[str, ...] = ()
    aliases: dict[str, str] = field(default_factory=dict)


_CONTACT = {"contact": "contact", "contactName": "contact", "character": "contact", "name": "contact"}

PARAM_SPECS: dict[str, ParamSpec] = {
    "unlock_contact": ParamSpec(("contact",), _CONTACT),
    "end_thread": ParamSpec(("contact",), _CONTACT),
    "delayed_message": ParamSpec(
        ("message",),
        {"message": "message", "text": "message", "contact": "contact", "character": "contact"},
    ),
    "send_photo": ParamSpec(("file", "caption"), {"file": "file", "caption": "caption"}),
    "send_video": ParamSpec(("file", "caption"), {"file": "file", "caption": "caption"}),
    "drop_pin": ParamSpec(
        ("location", "description"),
        {
            "location": "location",
            "description": "description",
            "mapfile": "map_file",
            "map_file": "map_file",
            "map": "map_file",
        },
    ),
    "call_911": ParamSpec(),
    "open_thread": ParamSpec(("contact",), {**_CONTACT, "thread_id": "contact"}),
    "trigger_eli_needs_code": ParamSpec(("code",), {"code": "code"}),
    "typing_indicator": ParamSpec(("duration",), {"duration": "duration"}),
    "set_typing_delay": ParamSpec(("value",), {"value": "value", "ms": "value"}),
    "show_notification": ParamSpec(
        ("title", "body"), {"title": "title", "body": "body", "message": "body"}
    ),
    "vibrate": ParamSpec(("pattern",), {"pattern": "pattern"}),
    "set_contact_status": ParamSpec(
        ("contact", "status"), {"contact": "contact", "character": "contact", "status": "status"}
    ),
    "trigger_emergency_call": ParamSpec(("number",), {"number": "number"}),
    "set_variable": ParamSpec(
        ("name", "value"), {"name": "name", "variable": "name", "value": "value"}
    ),
}

ACTION_KINDS = frozenset(PARAM_SPECS)


# ── Parameters ──────────────────────────────────────────────


def split_delay(params: str) -> tuple[int, str]:
    """Strip the universal `delay: N` token. Returns (delay, remaining params)."""
    match = DELAY_RE.search(params)
    if not match:
        return 0, params.strip()
    remaining = params[:match.start()] + params[match.end():]
    return int(match.group(1)), remaining.strip().strip(",").strip()


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def _parse_named(spec: ParamSpec, params: str) -> dict | None:
    """Read `key: value` pairs. None unless params opens with a known key.

    Quoted values run to the closing quote. Unquoted values run up to the next
    known key for a field not yet set, or to the end.
    """
    fields: dict = {}
    pos = 0
    while pos < len(params):
        head = KEY_RE.match(params, pos)
        if not head or head.group(1) not in spec.aliases:
            if not fields:
                return None
            logger.debug("Ignoring trailing parameters %r", params[pos:])
            break
        field_name = spec.aliases[head.group(1)]
        pos = head.end()
        if params.startswith('"', pos):
            end = params.find('"', pos + 1)
            end = len(params) if end == -1 else end
            value = params[pos + 1:end]
            pos = end + 1
        else:
            end = len(params)
            for match in NEXT_KEY_RE.finditer(params, pos):
                other = spec.aliases.get(match.group(1))
                if other is not None and other != field_name and other not in fields:
                    end = match.start()
                    break
            value = params[pos:end].strip().rstrip(",").strip()
            pos = end
        fields.setdefault(field_name, value)
        pos = SEPARATOR_RE.match(params, pos).end()
    return fields


def parse_params(kind: str, params: str) -> dict:
    """Read a parameter string with the kind's table. Returns model fields."""
    spec = PARAM_SPECS[kind]
    if not params:
        return {}

    named = _parse_named(spec, params)
    if named is not None:
        return named

    if kind == "set_variable":
        set_form = SET_FORM_RE.match(params.strip())
        if set_form:
            return {"name": set_form.group(1), "value": _unquote(set_form.group(2))}

    fields: dict = {}
    if not spec.positional:
        logger.debug("Ignoring parameters %r for %s", params, kind)
        return fields
    values = params.split(",", len(spec.positional) - 1)
    for name, value in zip(spec.positional, values):
        value = _unquote(value)
        if value:
            fields[name] = value
    return fields


# ── Actions ─────────────────────────────────────────────────


def parse_action(body: str, log: DiagnosticLog, passage: str | None = None) -> Action | None:
    """Parse the inside of an [Action: ...] tag into a typed Action."""
    head = ACTION_HEAD_RE.match(body)
    if not head:
        log.warning("invalid_action", f"Malformed action: [Action: {body}]", passage=passage)
        return None
    kind = head.group(1)
    if kind not in PARAM_SPECS:
        log.warning("invalid_action", f"Unknown action kind {kind!r}", passage=passage)
        return None

    delay, params = split_delay(head.group(2))
    fields = parse_params(kind, params)
    if kind == "set_typing_delay" and "value" not in fields and delay:
        fields["value"], delay = delay, 0

    try:
        return _ACTION_ADAPTER.validate_python({"kind": kind, "delay": delay, **fields})
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'][1:]) or kind}: {err['msg']}" for err in e.errors()
        )
        log.warning("invalid_action", f"Invalid {kind} action ({problems})", passage=passage)
        return None


# ── Choices ─────────────────────────────────────────────────


def scan_links(text: str) -> list[tuple[int, int, str]]:
    """Find [[...]] links, allowing single brackets inside. Returns (start, end, inner)."""
    spans: list[tuple[int, int, str]] = []
    pos = 0
    while True:
        start = text.find("[[", pos)
        if start < 0:
            break
        depth = 0
        end = -1
        for i in range(start, len(text)):
            if text[i] == "[":
                depth += 1
            elif text[i] == "]":
                depth -= 1
                if depth == 0:
                    end = i + 1
                    break
        if end < 0 or text[end - 2:end] != "]]":
            break
        spans.append((start, end, text[start + 2:end - 2]))
        pos = end
    return spans


def parse_choice(inner: str, log: DiagnosticLog, passage: str | None = None) -> Choice | None:
    embedded: Action | None = None
    match = ACTION_RE.search(inner)
    if match:
        embedded = parse_action(match.group(1), log, passage)
        inner = inner[:match.start()] + inner[match.end():]

    if "|" in inner:
        display, target = inner.rsplit("|", 1)
    else:
        display = target = inner
    display = " ".join(display.split())
    target = target.strip()
    if not display:
        log.warning("syntax", f"Choice without display text: [[{inner}]]", passage=passage)
        return None
    return Choice(text=display, target=target or display, embedded_action=embedded)


def extract_parts(
    text: str, log: DiagnosticLog, passage: str | None = None
) -> tuple[str, list[Choice], list[Action]]:
    """Split pruned passage text into (reply text, choices, actions)."""
    choices: list[Choice] = []
    remaining: list[str] = []
    pos = 0
    for start, end, inner in scan_links(text):
        remaining.append(text[pos:start])
        pos = end
        choice = parse_choice(inner, log, passage)
        if choice is not None:
            choices.append(choice)
    remaining.append(text[pos:])
    rest = "".join(remaining)

    actions: list[Action] = []
    for match in ACTION_RE.finditer(rest):
        action = parse_action(match.group(1), log, passage)
        if action is not None:
            actions.append(action)
    rest = ACTION_RE.sub("", rest)

    lines = [line.strip() for line in rest.splitlines()]
    return "\n".join(line for line in lines if line), choices, actions
