"""Application factory for the FastAPI service."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .chat import ChatOrchestrator
from .chat.multimodal import MultimodalPreprocessor
from .chat.proxy import ChatCompletionProxy
from .config import PROJECT_ROOT, get_settings
from .jobs import (
    BackgroundJobRunner,
    CompletionNotificationBroker,
    MoodboardAssembler,
    ProactiveStylingPipeline,
    TryOnJobRunner,
)
from .llm import LLMClient
from .routers.chat import router as chat_router
from .routers.completions import router as completions_router
from .routers.model_images import router as model_images_router
from .routers.moodboards import router as moodboards_router
from .routers.notify import router as notify_router
from .services.model_images import ModelImageStore
from .services.product_search import ProductSearchClient
from .services.uploads import UploadStorage

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _configure_logging() -> None:
    """Configure logging based on LOG_LEVEL environment variable."""
    # Load .env file first to ensure LOG_FILE is available
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    log_file = os.getenv("LOG_FILE")
    handlers: list[logging.Handler] = []

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT))
        handlers.append(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT))
    handlers.append(console_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    logging.getLogger("stylist").setLevel(log_level)
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    # Request/response bodies are only interesting when debugging
    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
    else:
        logging.getLogger("httpx").setLevel(log_level)
        logging.getLogger("httpcore").setLevel(log_level)


def _resolve_under(base: Path, p: Path) -> Path:
    # Allow absolute paths as-is (useful for tests and external mounts).
    if p.is_absolute():
        return p.resolve()
    resolved = (base / p).resolve()
    if not resolved.is_relative_to(base):
        raise ValueError(f"Configured path {resolved} escapes project root {base}")
    return resolved


def create_app() -> FastAPI:
    _configure_logging()

    settings = get_settings()

    uploads_dir = _resolve_under(PROJECT_ROOT, settings.uploads_dir)
    model_images_path = _resolve_under(PROJECT_ROOT, settings.model_images_path)

    storage = UploadStorage(uploads_dir, url_prefix=settings.uploads_url_prefix)
    model_image_store = ModelImageStore(model_images_path)
    completion_store = CompletionNotificationBroker(
        ttl_seconds=settings.completion_ttl_seconds
    )
    job_runner = BackgroundJobRunner()

    chat_client = LLMClient.for_chat(settings)
    structured_client = LLMClient.for_structured_output(settings)
    product_search = ProductSearchClient.from_settings(settings)
    try_on = TryOnJobRunner.from_settings(settings, storage)

    proxy = ChatCompletionProxy(
        chat_client, vendor_stream=settings.llm_stream_format == "llama"
    )
    orchestrator = ChatOrchestrator(
        proxy,
        MultimodalPreprocessor(storage),
        product_search,
        tool_hop_limit=settings.chat_tool_hop_limit,
    )
    assembler = MoodboardAssembler(
        structured_llm=structured_client,
        try_on=try_on,
        model_images=model_image_store,
        completions=completion_store,
        default_mode=settings.try_on_default_mode,
    )
    proactive_pipeline = ProactiveStylingPipeline(
        structured_llm=structured_client,
        product_search=product_search,
        assembler=assembler,
        completions=completion_store,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        uploads_dir.mkdir(parents=True, exist_ok=True)
        logger.info(
            "Stylist backend ready (chat model %s, uploads in %s)",
            settings.chat_model,
            uploads_dir,
        )
        try:
            yield
        finally:
            await job_runner.drain(timeout=30.0)
            for name, closer in (
                ("chat client", chat_client.aclose),
                ("structured client", structured_client.aclose),
                ("product search", product_search.aclose),
                ("try-on runner", try_on.aclose),
            ):
                try:
                    await asyncio.wait_for(closer(), timeout=10.0)
                except asyncio.TimeoutError:
                    logger.warning("Closing %s timed out after 10s", name)
                except Exception as exc:
                    logger.warning("Error while closing %s: %s", name, exc)

    app = FastAPI(
        title="AI Stylist Backend",
        version="0.1.0",
        description="Streaming stylist chat, virtual try-on jobs, and moodboards.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.chat_orchestrator = orchestrator
    app.state.completion_proxy = proxy
    app.state.moodboard_assembler = assembler
    app.state.proactive_pipeline = proactive_pipeline
    app.state.job_runner = job_runner
    app.state.completion_store = completion_store
    app.state.model_image_store = model_image_store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat_router)
    app.include_router(completions_router)
    app.include_router(moodboards_router)
    app.include_router(notify_router)
    app.include_router(model_images_router)

    app.mount(
        storage.url_prefix.rstrip("/"),
        StaticFiles(directory=uploads_dir, check_dir=False),
        name="uploads",
    )

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str | int]:
        return {
            "status": "ok",
            "chat_model": settings.chat_model,
            "background_jobs": job_runner.active,
        }

    return app


__all__ = ["create_app"]
