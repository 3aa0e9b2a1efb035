"""FastAPI API endpoints under /api.

Endpoint groups: chat (orchestration turn, optionally streamed), users
(profile, exemplar ingestion, fingerprint, status, generation, agent
stats), patterns (feedback), conversations (context metrics), settings,
health. Services are built once per process and live on app.state.
"""

from fastapi import APIRouter

from .chat import router as chat_router
from .patterns import router as patterns_router
from .settings import router as settings_router
from .users import router as users_router

router = APIRouter()
router.include_router(chat_router)
router.include_router(users_router)
router.include_router(patterns_router)
router.include_router(settings_router)
