"""Script library endpoints: list, read, save, delete, and compile check."""

from fastapi import APIRouter, HTTPException
from fastapi.responses import PlainTextResponse

from backend import storage
from threadline import compile_script

from .models import SaveScriptBody

router = APIRouter()


@router.get("/scripts")
async def list_scripts():
    """List all scripts (presets merged with user scripts)."""
    return storage.list_scripts()


@router.get("/scripts/{name:path}/diagnostics")
async def script_diagnostics(name: str):
    """Compile a script without loading it and return its errors and warnings."""
    text = storage.read_script(name)
    if text is None:
        raise HTTPException(404, "Script not found")
    result = compile_script(text)
    return {
        "title": result.program.metadata.title,
        "contacts": list(result.program.contacts),
        "errors": [d.model_dump() for d in result.errors],
        "warnings": [d.model_dump() for d in result.warnings],
    }


@router.get("/scripts/{name:path}", response_class=PlainTextResponse)
async def get_script(name: str):
    """Get a script's source text."""
    text = storage.read_script(name)
    if text is None:
        raise HTTPException(404, "Script not found")
    return text


@router.put("/scripts", status_code=201)
async def save_script(body: SaveScriptBody):
    """Create or overwrite a user script."""
    try:
        return storage.save_script(body.name, body.text)
    except ValueError as e:
        raise HTTPException(400, str(e))


@router.delete("/scripts/{name:path}")
async def delete_script(name: str):
    """Delete a user script (revealing any preset of the same name)."""
    if not storage.delete_script(name):
        raise HTTPException(404, "Script not found")
    return {"ok": True}
