"""FastAPI API endpoints under /api.

Endpoint groups: health and settings, the script library (presets merged with
user scripts), and the game session. Thread resources (messages, choices,
viewed) are nested under /api/game/contacts/{contact}/.
"""

from fastapi import APIRouter

from .game import router as game_router
from .scripts import router as scripts_router
from .settings import router as settings_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(scripts_router)
router.include_router(game_router)
