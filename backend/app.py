import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.routes import router
from voiceforge.config import get_config
from voiceforge.errors import AuthenticityRejectedError, IncompleteFingerprintError, NoCorpusError
from voiceforge.llm import LLM, LLMError, UpstreamRateLimitError, UpstreamTimeoutError
from voiceforge.services import build_services

load_dotenv(Path(__file__).parent.parent / ".env")

logger = logging.getLogger(__name__)


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(NoCorpusError)
    async def no_corpus(request: Request, exc: NoCorpusError):
        return JSONResponse(status_code=404, content={"detail": str(exc), "reason": "no_corpus"})

    @app.exception_handler(IncompleteFingerprintError)
    async def incomplete_fingerprint(request: Request, exc: IncompleteFingerprintError):
        return JSONResponse(status_code=422, content={
            "detail": str(exc), "reason": "fingerprint_incomplete", "missing": exc.missing,
        })

    @app.exception_handler(AuthenticityRejectedError)
    async def authenticity_rejected(request: Request, exc: AuthenticityRejectedError):
        return JSONResponse(status_code=422, content={
            "detail": str(exc), "reason": "authenticity_rejected",
            "score": exc.score, "issues": exc.issues,
        })

    @app.exception_handler(LLMError)
    async def upstream_error(request: Request, exc: LLMError):
        if isinstance(exc, UpstreamTimeoutError):
            status = 504
        elif isinstance(exc, UpstreamRateLimitError):
            status = 503
        else:
            status = 502
        logger.warning("upstream failure on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=status, content={"detail": str(exc), "reason": "upstream_error"})

    @app.exception_handler(ValueError)
    async def bad_identifier(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})


def create_app(data_dir: Path | None = None, llm: LLM | None = None) -> FastAPI:
    """Build the app. llm overrides the configured HTTP client (tests, demo)."""
    settings = get_config(data_dir)

    app = FastAPI(title="VoiceForge")
    app.state.llm_override = llm
    app.state.services = build_services(settings, llm=llm)
    _register_error_handlers(app)
    app.include_router(router, prefix="/api")
    return app


# Default app instance for uvicorn (uses VOICEFORGE_DATA_DIR env var or default)
app = create_app()
