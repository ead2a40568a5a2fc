"""Variable pre-scan (pass 1).

Collects every `(set: $name to value)` in the whole script, ignoring passage
boundaries, so conditionals that appear before a variable's canonical
initialiser still see a value. Later assignments overwrite earlier ones.
"""

from __future__ import annotations

import re

from threadline.models import VariableValue, parse_value

SET_RE = re.compile(r"\(set:\s*\$(\w+)\s+to\s+([^)]+?)\s*\)")


def prescan_variables(text: str) -> dict[str, VariableValue]:
    return apply_sets(text, {})


def apply_sets(content: str, variables: dict[str, VariableValue]) -> dict[str, VariableValue]:
    """Apply every (set:) in content to variables in place, in order. Returns variables."""
    for match in SET_RE.finditer(content):
        variables[match.group(1)] = parse_value(match.group(2))
    return variables
