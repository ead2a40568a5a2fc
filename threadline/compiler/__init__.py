"""Script compiler: Twee/Harlowe subset → GameData.

Stages, leaves first:
  1. split_passages        `:: Title [tags] {json}` headers → Passage records.
  2. prescan_variables     pass 1, every (set: $v to x) in the whole script.
  3. resolve_conditionals  pass 2, (if:)/(else:)/(endif) pruning per passage.
  4. extract_parts         [[choice|target]] links and [Action: kind: params].
  5. assemble_contacts     `<Contact>-Round-<N[.M]>` titles → Contact/Round graph.

compile_script() runs them in order and returns CompileResult(program,
errors, warnings). Only unreadable input raises (ScriptError); everything
else is reported as a diagnostic and compilation carries on.

Supported script subset:

  :: StoryTitle
  My Story

  :: Initial Variables [initial_variables]
  (set: $met_maya to false)

  :: Jamie-Round-1 [Jamie initial_contact]
  Hey, have you heard from Sarah?
  [[No, why?|Jamie-Round-2.1]]

  :: Jamie-Round-2.1 [Jamie]
  (if: $met_maya is true)Maya told me everything.(else:)I'm worried.(endif)
  [Action: unlock_contact: Maya]
  [Action: end_thread delay: 500]
"""

from .conditionals import ConditionError, evaluate_condition, resolve_conditionals  # noqa: F401
from .core import ScriptError, compile_script  # noqa: F401
from .diagnostics import DiagnosticLog  # noqa: F401
from .grammar import ACTION_KINDS, extract_parts, parse_action  # noqa: F401
from .passages import split_passages  # noqa: F401
from .rounds import (  # noqa: F401
    first_round_key,
    parse_round_title,
    render_round,
    resolve_target,
    round_key_from_target,
    round_sort_key,
)
from .variables import prescan_variables  # noqa: F401
