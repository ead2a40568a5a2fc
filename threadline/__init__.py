"""Threadline: branching-narrative text-message engine.

A script (Twee/Harlowe subset) compiles into a GameData program of contacts
and rounds; GameEngine plays it as a set of SMS threads.

    result = compile_script(text)
    engine = GameEngine(result.program, store=JsonFileStore(path))
    engine.submit_choice("Jamie", 0)
"""

from .compiler import ScriptError, compile_script  # noqa: F401
from .engine import GameEngine  # noqa: F401
from .events import EventBus, EventType, GameEvent  # noqa: F401
from .models import (  # noqa: F401
    Action,
    Choice,
    CompileResult,
    Contact,
    Diagnostic,
    GameData,
    GameState,
    Message,
    Notification,
    PendingEffect,
    Round,
)
from .persistence import JsonFileStore, MemoryStore, StateStore  # noqa: F401
from .scheduler import ManualClock, MonotonicClock, Scheduler, WallClock  # noqa: F401
