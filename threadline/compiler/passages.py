"""Passage splitting: raw script text → ordered Passage records.

Header format:
  :: Jamie-Round-1 [Jamie initial_contact] {"position":"575,375","size":"100,100"}
  :: StoryTitle

A header without bracketed tags is a metadata passage (StoryTitle, StoryData).
A header that cannot be parsed is a structural error; a placeholder passage
titled "Unknown" swallows its content so the rest of the script still parses.
"""

from __future__ import annotations

import json
import re

from threadline.models import Passage, Position, Size

from .diagnostics import DiagnosticLog

HEADER_RE = re.compile(r"^::\s*(?P<title>[^\[]*?)\s*(?:\[(?P<tags>[^\]]*)\](?P<rest>.*))?$")
PLACEHOLDER_TITLE = "Unknown"


def split_passages(text: str, log: DiagnosticLog) -> list[Passage]:
    """Split script text on `::` header lines, in script order."""
    passages: list[Passage] = []
    header: Passage | None = None
    body: list[str] = []

    def _flush() -> None:
        if header is not None:
            passages.append(header.model_copy(update={"content": "\n".join(body).strip("\n")}))

    for line_no, line in enumerate(text.splitlines(), start=1):
        if line.lstrip().startswith("::"):
            _flush()
            header = parse_header(line.strip(), line_no, log)
            body = []
        elif header is not None:
            body.append(line.rstrip())

    _flush()
    return passages


def parse_header(line: str, line_no: int, log: DiagnosticLog) -> Passage:
    match = HEADER_RE.match(line)
    if not match or not match.group("title"):
        log.error("syntax", f"Invalid passage header format: {line}", line=line_no)
        return Passage(title=PLACEHOLDER_TITLE, line=line_no)

    title = match.group("title")
    tags = (match.group("tags") or "").split()
    position: Position | None = None
    size: Size | None = None

    rest = (match.group("rest") or "").strip()
    if rest:
        meta = re.search(r"\{.*\}", rest)
        try:
            if not meta:
                raise ValueError("no JSON object")
            data = json.loads(meta.group(0))
            if not isinstance(data, dict):
                raise ValueError("not an object")
        except ValueError:
            log.warning("metadata", f"Failed to parse JSON data: {rest}", line=line_no, passage=title)
        else:
            position = _pair(data.get("position"), Position, "x", "y")
            size = _pair(data.get("size"), Size, "w", "h")

    return Passage(title=title, tags=tags, line=line_no, position=position, size=size)


def _pair(raw, model, first: str, second: str):
    """Parse "575,375" into a two-field model, or None."""
    if not isinstance(raw, str):
        return None
    parts = [p.strip() for p in raw.split(",")]
    if len(parts) != 2:
        return None
    try:
        return model(**{first: int(parts[0]), second: int(parts[1])})
    except ValueError:
        return None
