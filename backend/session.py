"""The process-wide game session: one GameEngine bound to the data dir.

init_session() builds the engine from config and, when autoload is on, loads
the configured default script. Routes reach the engine through get_engine().
"""

import logging

from backend import storage
from threadline import EventBus, GameData, GameEngine, JsonFileStore, Scheduler
from threadline.models import CompileResult

logger = logging.getLogger(__name__)

_engine: GameEngine | None = None
_script_name: str | None = None


def init_session(scheduler: Scheduler | None = None) -> GameEngine:
    global _engine, _script_name

    config = storage.get_config()
    _engine = GameEngine(
        GameData(),
        store=JsonFileStore(storage.state_path()),
        scheduler=scheduler,
        events=EventBus(),
        typing_delay=int(config["typing_delay_ms"]),
    )
    _script_name = None

    name = config["default_script"]
    if config["autoload"] and name:
        if load_script(name) is None:
            logger.warning("Default script %r not found; starting with no script", name)
    return _engine


def get_engine() -> GameEngine:
    assert _engine is not None, "Call init_session() before using the session"
    return _engine


def script_name() -> str | None:
    return _script_name


def load_script(name: str) -> CompileResult | None:
    """Compile a library script into the running engine. None if it does not exist."""
    global _script_name

    text = storage.read_script(name)
    if text is None:
        return None
    result = get_engine().load_script(text)
    _script_name = name
    return result
