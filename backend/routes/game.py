"""Game session endpoints: load a script, read threads, make choices.

Contact-scoped resources live under /api/game/contacts/{contact}/.
"""

from fastapi import APIRouter, HTTPException

from backend import session
from threadline import ScriptError

from .models import ChoiceBody, LoadScriptBody, SetVariableBody, TypingDelayBody

router = APIRouter(prefix="/game")


def _require_contact(contact: str) -> None:
    engine = session.get_engine()
    if contact not in engine.game_data.contacts and contact not in engine.state.unlocked_contacts:
        raise HTTPException(404, "Contact not found")


def _contact_summary(contact: str) -> dict:
    engine = session.get_engine()
    messages = engine.get_contact_messages(contact)
    return {
        "name": contact,
        "state": engine.get_contact_state(contact),
        "current_round": engine.get_current_round(contact),
        "status": engine.get_contact_status(contact),
        "unread": sum(1 for m in messages if not m.read and not m.from_player),
        "last_message": messages[-1].model_dump() if messages else None,
    }


@router.post("/load")
async def load_script(body: LoadScriptBody):
    """Load a library script by name, or raw script text."""
    if body.name is not None:
        result = session.load_script(body.name)
        if result is None:
            raise HTTPException(404, "Script not found")
    elif body.text is not None:
        try:
            result = session.get_engine().load_script(body.text)
        except ScriptError as e:
            raise HTTPException(400, str(e))
    else:
        raise HTTPException(400, "Give a script name or text")
    return {
        "title": result.program.metadata.title,
        "errors": [d.model_dump() for d in result.errors],
        "warnings": [d.model_dump() for d in result.warnings],
    }


@router.get("/state")
async def get_state():
    """Summary of the running story: metadata, unlocked threads, typing delay."""
    engine = session.get_engine()
    return {
        "script": session.script_name(),
        "metadata": engine.game_data.metadata.model_dump(),
        "contacts": [_contact_summary(c) for c in engine.get_unlocked_contacts()],
        "open_thread": engine.state.open_thread,
        "typing_delay": engine.get_global_typing_delay(),
    }


@router.get("/contacts/{contact}/messages")
async def get_messages(contact: str):
    """Message history of one thread."""
    _require_contact(contact)
    return [m.model_dump() for m in session.get_engine().get_contact_messages(contact)]


@router.get("/contacts/{contact}/choices")
async def get_choices(contact: str):
    """Choices currently open to the player in this thread."""
    _require_contact(contact)
    choices = session.get_engine().get_current_choices(contact)
    return [{"index": i, "text": c.text} for i, c in enumerate(choices)]


@router.post("/contacts/{contact}/choices")
async def submit_choice(contact: str, body: ChoiceBody):
    """Play one of the current choices."""
    _require_contact(contact)
    if not session.get_engine().submit_choice(contact, body.index):
        raise HTTPException(400, "Choice not available")
    return {"ok": True}


@router.post("/contacts/{contact}/viewed")
async def mark_viewed(contact: str):
    """Mark a thread's messages as read."""
    _require_contact(contact)
    session.get_engine().mark_contact_viewed(contact)
    return {"ok": True}


@router.get("/variables")
async def get_variables():
    """The live variable table."""
    return session.get_engine().state.variables


@router.put("/variables/{name}")
async def set_variable(name: str, body: SetVariableBody):
    """Set a story variable (may reopen conditional threads)."""
    engine = session.get_engine()
    engine.set_variable(name, body.value)
    return {"name": name, "value": engine.get_variable(name)}


@router.put("/typing-delay")
async def set_typing_delay(body: TypingDelayBody):
    """Set the global typing delay (ms) for future replies."""
    engine = session.get_engine()
    engine.set_global_typing_delay(body.delay)
    return {"typing_delay": engine.get_global_typing_delay()}


@router.post("/reset")
async def reset_game():
    """Discard progress and restart the loaded story."""
    session.get_engine().reset_game()
    return {"ok": True}


@router.get("/notifications")
async def get_notifications():
    """Queued notifications (unlocks, alerts, vibrations, calls)."""
    return [n.model_dump() for n in session.get_engine().get_notifications()]


@router.delete("/notifications")
async def clear_notifications():
    """Empty the notification queue."""
    session.get_engine().clear_notifications()
    return {"ok": True}
