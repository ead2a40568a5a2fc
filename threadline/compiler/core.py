"""Two-pass compiler driver: script text → CompileResult."""

from __future__ import annotations

import json
import logging

from threadline.models import CompileResult, GameData, Passage, StoryMetadata

from .diagnostics import DiagnosticLog
from .passages import split_passages
from .rounds import assemble_contacts, check_targets, first_round_key
from .variables import apply_sets, prescan_variables

logger = logging.getLogger(__name__)

INITIAL_VARIABLES_TAG = "initial_variables"
INITIAL_VARIABLES_TITLE = "Initial Variables"


class ScriptError(ValueError):
    """Raised when the script input is not readable text."""


def compile_script(script: str | bytes | None) -> CompileResult:
    """Compile a script into a GameData program plus diagnostics.

    Pass 1 pre-scans every (set:) in the whole text; an initial_variables
    passage then overrides the keys it defines. Pass 2 compiles each round
    passage in script order against that snapshot, applying (set:) as it goes.
    """
    text = _decode(script)
    log = DiagnosticLog()
    if not text.strip():
        return CompileResult(program=GameData())

    passages = split_passages(text, log)

    # Pass 1
    variables = prescan_variables(text)
    for passage in passages:
        if _is_initial_variables(passage):
            apply_sets(passage.content, variables)
    defaults = dict(variables)

    # Pass 2
    rounds = [p for p in passages if p.tags and not _is_initial_variables(p)]
    contacts = assemble_contacts(rounds, variables, log)
    check_targets(contacts, log)

    program = GameData(
        contacts=contacts,
        variables=defaults,
        metadata=_metadata(passages, contacts, log),
    )
    logger.debug(
        "Compiled %d passages into %d contacts (%d errors, %d warnings)",
        len(passages), len(contacts), len(log.errors), len(log.warnings),
    )
    return CompileResult(program=program, errors=log.errors, warnings=log.warnings)


def _decode(script: str | bytes | None) -> str:
    if script is None:
        raise ScriptError("No script given")
    if isinstance(script, bytes):
        try:
            return script.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ScriptError(f"Script is not valid UTF-8: {e}") from e
    return script


def _is_initial_variables(passage: Passage) -> bool:
    return INITIAL_VARIABLES_TAG in passage.tags or passage.title == INITIAL_VARIABLES_TITLE


def _metadata(passages: list[Passage], contacts: dict, log: DiagnosticLog) -> StoryMetadata:
    title = "Untitled Story"
    start = ""
    for passage in passages:
        if passage.title == "StoryTitle" and passage.content.strip():
            title = passage.content.strip()
        elif passage.title == "StoryData" and passage.content.strip():
            try:
                data = json.loads(passage.content)
                start = str(data.get("start", "")) if isinstance(data, dict) else ""
            except ValueError:
                log.warning("metadata", "StoryData is not valid JSON", line=passage.line, passage="StoryData")

    if not start:
        for contact in contacts.values():
            key = first_round_key(contact)
            if contact.unlocked and key is not None:
                start = contact.rounds[key].title
                break
    return StoryMetadata(title=title, start_passage=start)
