import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from assembler.app.api.assemble import router as assemble_router
from assembler.app.api.templates import router as templates_router
from assembler.app.config import Settings, get_settings
from assembler.app.engine.orchestrator import AssemblyOrchestrator
from assembler.app.engine.template_store import TemplateStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Builds the template store and orchestrator once per process. Invalid
    configuration fails startup.
    """
    settings: Settings = app.state.settings
    logging.getLogger("assembler").setLevel(settings.log_level)

    # Shared transport for remote template roots
    http_client: Optional[httpx.Client] = None
    if settings.template_root.startswith(("http://", "https://")):
        http_client = httpx.Client(timeout=settings.template_fetch_timeout_seconds)

    store = TemplateStore(
        settings.template_root,
        timeout_seconds=settings.template_fetch_timeout_seconds,
        http_client=http_client,
    )
    app.state.template_store = store
    app.state.orchestrator = AssemblyOrchestrator.from_settings(settings, store=store)

    logger.info(
        "Assembler started (template root %s, default template %s)",
        store.root,
        settings.default_template_name,
    )

    try:
        yield
    finally:
        if http_client is not None:
            try:
                http_client.close()
            except Exception:
                logger.warning("http_client_shutdown_failed")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory. ``settings`` defaults to the environment.
    """
    if settings is None:
        try:
            settings = get_settings()
        except Exception:
            logger.exception("invalid_assembler_configuration")
            raise

    app = FastAPI(
        title="docx-assembler",
        description="Template-driven Word document assembly engine",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.include_router(assemble_router)
    app.include_router(templates_router)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/healthz", tags=["Monitoring"], summary="Liveness probe")
    def health_check():
        return {"status": "ok", "service": "assembler", "version": app.version}

    return app


app = create_app()
