"""Round assembly: passages → Contact → Round graph.

Titles of the form `<Contact>-Round-<N[.M]>` bind a passage to a contact and a
round key. Keys ending in ".0" are conditional rounds: their first (if:)
expression decides whether the round is reachable.
"""

from __future__ import annotations

import re

from threadline.models import Contact, Passage, Round, VariableValue

from .conditionals import first_condition, resolve_conditionals
from .diagnostics import DiagnosticLog
from .grammar import extract_parts

ROUND_TITLE_RE = re.compile(r"^(\w[\w ]*)-Round-(\d+(\.\d+)?)$")
ROUND_REF_RE = re.compile(r"Round-(\d+(?:\.\d+)?)")

UNLOCK_TAGS = frozenset({"initial_contact", "unlocked"})


def parse_round_title(title: str) -> tuple[str, str] | None:
    """Return (contact, round key) for a round passage title, else None."""
    match = ROUND_TITLE_RE.match(title.strip())
    if not match:
        return None
    return match.group(1).strip(), match.group(2)


def round_key_from_target(target: str) -> str | None:
    match = ROUND_REF_RE.search(target)
    return match.group(1) if match else None


def round_sort_key(key: str) -> tuple[int, ...]:
    return tuple(int(part) for part in key.split("."))


def first_round_key(contact: Contact) -> str | None:
    if not contact.rounds:
        return None
    return min(contact.rounds, key=round_sort_key)


def resolve_target(contact: Contact, target: str, text: str = "") -> str | None:
    """Round key a choice leads to, or None when nothing matches.

    A `Round-N[.M]` reference must name an existing round. Anything else is
    matched, case-insensitively, against each round's title or the first line
    of its passage text.
    """
    key = round_key_from_target(target)
    if key is not None:
        return key if key in contact.rounds else None
    wanted = {target.strip().lower(), text.strip().lower()} - {""}
    for key, round_ in contact.rounds.items():
        first_line = round_.passage.split("\n", 1)[0].strip().lower()
        if round_.title.lower() in wanted or (first_line and first_line in wanted):
            return key
    return None


def compile_round(
    key: str,
    title: str,
    content: str,
    variables: dict[str, VariableValue],
    log: DiagnosticLog,
) -> Round:
    """Evaluate conditionals (mutating variables) and extract choices/actions."""
    pruned = resolve_conditionals(content, variables, log, passage=title)
    text, choices, actions = extract_parts(pruned, log, passage=title)
    return Round(
        key=key,
        title=title,
        passage=text,
        choices=choices,
        actions=actions,
        original_content=content,
        condition=first_condition(content) if key.endswith(".0") else None,
    )


def render_round(round_: Round, variables: dict[str, VariableValue]) -> Round:
    """Re-evaluate a round's original content against a live variable table.

    Works on a copy of the table; diagnostics were already reported at compile
    time and are discarded here.
    """
    return compile_round(
        round_.key, round_.title, round_.original_content, dict(variables), DiagnosticLog()
    )


def assemble_contacts(
    passages: list[Passage],
    variables: dict[str, VariableValue],
    log: DiagnosticLog,
) -> dict[str, Contact]:
    """Group round passages by contact, in script order."""
    names: list[str] = []
    unlocked: dict[str, bool] = {}
    rounds: dict[str, dict[str, Round]] = {}
    layout: dict[str, Passage] = {}

    for passage in passages:
        bound = parse_round_title(passage.title)
        if bound is None:
            log.warning(
                "structure",
                f"Passage {passage.title!r} is not a <Contact>-Round-<N> passage; skipped",
                line=passage.line,
                passage=passage.title,
            )
            continue
        name, key = bound
        if name not in rounds:
            names.append(name)
            rounds[name] = {}
            unlocked[name] = False
            layout[name] = passage
        if UNLOCK_TAGS & set(passage.tags):
            unlocked[name] = True

        if key in rounds[name]:
            log.warning(
                "structure",
                f"Duplicate round {key!r} for {name}; keeping the first definition",
                line=passage.line,
                passage=passage.title,
            )
            continue
        rounds[name][key] = compile_round(key, passage.title, passage.content, variables, log)

    return {
        name: Contact(
            name=name,
            unlocked=unlocked[name],
            rounds=rounds[name],
            position=layout[name].position,
            size=layout[name].size,
        )
        for name in names
    }


def check_targets(contacts: dict[str, Contact], log: DiagnosticLog) -> None:
    """Warn about choices that resolve to no round of their contact."""
    for contact in contacts.values():
        for round_ in contact.rounds.values():
            for choice in round_.choices:
                if resolve_target(contact, choice.target, choice.text) is None:
                    log.warning(
                        "unresolved_target",
                        f"Choice {choice.text!r} targets unknown round {choice.target!r}",
                        passage=round_.title,
                    )
