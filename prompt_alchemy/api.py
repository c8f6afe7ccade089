"""FastAPI surface: chat turns (JSON or SSE), session create/read, model catalog."""

import asyncio
import json
import logging
import uuid
from collections.abc import Callable
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from config.config_loader import AppConfig, ModelConfig, load_config
from prompt_alchemy.catalog import build_provider, resolve_model_config
from prompt_alchemy.errors import AlchemyError, SessionNotFoundError, UnauthorizedError
from prompt_alchemy.orchestrator import run_turn
from prompt_alchemy.providers.base import AIProvider, LLMTimeoutError, ProviderError
from prompt_alchemy.schemas import ChatRequest, CreateSessionRequest, SessionState
from prompt_alchemy.store import JsonFileSessionStore, SessionStore

logger = logging.getLogger(__name__)

TRACE_HEADER = "x-trace-id"
OWNER_HEADER = "x-owner-id"
OWNER_COOKIE = "owner_id"


def error_status(exc: Exception) -> int:
    if isinstance(exc, AlchemyError):
        return exc.status_code
    if isinstance(exc, LLMTimeoutError):
        return 504
    return 500


def error_payload(exc: Exception) -> dict:
    if isinstance(exc, AlchemyError):
        payload = {"error": str(exc), "code": exc.code}
        errors = getattr(exc, "errors", None)
        if errors:
            payload["errors"] = errors
        return payload
    if isinstance(exc, LLMTimeoutError):
        return {"error": "LLM request timeout", "code": "timeout"}
    if isinstance(exc, ProviderError):
        return {"error": str(exc), "code": "provider_error"}
    return {"error": "Internal server error", "code": "server_error"}


def _trace_id(request: Request) -> str:
    return getattr(request.state, "trace_id", None) or str(uuid.uuid4())


def require_owner(request: Request) -> str:
    owner_id = request.headers.get(OWNER_HEADER) or request.cookies.get(OWNER_COOKIE)
    if not owner_id or not owner_id.strip():
        raise UnauthorizedError("Missing owner identity")
    return owner_id.strip()


class SessionLocks:
    """Serializes turns per session; a lock is dropped once no turn holds or waits on it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, session_id: str):
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._users[session_id] = self._users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[session_id] -= 1
            if not self._users[session_id]:
                del self._users[session_id]
                del self._locks[session_id]


def create_app(
    config: AppConfig | None = None,
    store: SessionStore | None = None,
    provider_factory: Callable[[ModelConfig], AIProvider] = build_provider,
) -> FastAPI:
    """Build the app. Defaults: ``settings.yaml`` config and a JSON-file session store."""
    config = config or load_config()
    store = store or JsonFileSessionStore(config.defaults.store_dir)
    session_locks = SessionLocks()

    app = FastAPI(title="Prompt Alchemy", version="0.1.0")
    app.state.session_locks = session_locks
    router = APIRouter(prefix="/api")

    @app.middleware("http")
    async def attach_trace_id(request: Request, call_next):
        request.state.trace_id = request.headers.get(TRACE_HEADER) or str(uuid.uuid4())
        response = await call_next(request)
        response.headers.setdefault(TRACE_HEADER, request.state.trace_id)
        return response

    def _error_response(request: Request, exc: Exception) -> JSONResponse:
        status = error_status(exc)
        trace_id = _trace_id(request)
        if status >= 500:
            logger.error("Request failed trace=%s: %s", trace_id, exc)
        else:
            logger.info("Request rejected trace=%s status=%d: %s", trace_id, status, exc)
        return JSONResponse(error_payload(exc), status_code=status, headers={TRACE_HEADER: trace_id})

    @app.exception_handler(AlchemyError)
    async def handle_alchemy_error(request: Request, exc: AlchemyError) -> JSONResponse:
        return _error_response(request, exc)

    @app.exception_handler(ProviderError)
    async def handle_provider_error(request: Request, exc: ProviderError) -> JSONResponse:
        return _error_response(request, exc)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        if first.get("type") == "json_invalid":
            message = "Invalid JSON"
        else:
            message = f"Invalid request: {first.get('msg', 'validation failed')}"
        logger.info("Invalid request trace=%s: %s", _trace_id(request), exc.errors())
        return JSONResponse(
            {"error": message, "code": "invalid_request"},
            status_code=400,
            headers={TRACE_HEADER: _trace_id(request)},
        )

    @router.post("/chat")
    async def chat(
        request: Request,
        payload: ChatRequest,
        stream: bool = False,
        owner_id: str = Depends(require_owner),
    ):
        if payload.trace_id:
            request.state.trace_id = payload.trace_id
        trace_id = _trace_id(request)
        wants_stream = stream or "text/event-stream" in request.headers.get("accept", "")
        logger.info(
            "Chat request trace=%s session=%s stream=%s", trace_id, payload.session_id, wants_stream
        )

        if not wants_stream:
            async with session_locks.hold(payload.session_id):
                result = await run_turn(
                    payload, owner_id, config=config, store=store, provider_factory=provider_factory
                )
            return JSONResponse(result.model_dump(mode="json"), headers={TRACE_HEADER: trace_id})

        queue: asyncio.Queue[dict | None] = asyncio.Queue()

        def on_stage(stage: str, details: dict) -> None:
            queue.put_nowait({"event": "stage", "data": json.dumps({"stage": stage, **details}, ensure_ascii=False)})

        async def worker() -> None:
            try:
                async with session_locks.hold(payload.session_id):
                    result = await run_turn(
                        payload,
                        owner_id,
                        config=config,
                        store=store,
                        provider_factory=provider_factory,
                        on_stage=on_stage,
                    )
                queue.put_nowait({"event": "result", "data": result.model_dump_json()})
            except Exception as exc:
                status = error_status(exc)
                if status >= 500:
                    logger.exception("Streamed turn failed trace=%s", trace_id)
                queue.put_nowait({
                    "event": "error",
                    "data": json.dumps({**error_payload(exc), "status": status}, ensure_ascii=False),
                })
            finally:
                queue.put_nowait(None)

        async def events():
            yield {"event": "trace", "data": json.dumps({"traceId": trace_id})}
            task = asyncio.create_task(worker())
            try:
                while (item := await queue.get()) is not None:
                    yield item
            finally:
                if not task.done():
                    task.cancel()

        return EventSourceResponse(events(), headers={TRACE_HEADER: trace_id})

    @router.post("/sessions", status_code=201)
    async def create_session(
        payload: CreateSessionRequest | None = None,
        owner_id: str = Depends(require_owner),
    ):
        payload = payload or CreateSessionRequest()
        model_cfg = resolve_model_config(config, payload.model_id)
        record = await store.create(
            owner_id,
            SessionState(
                model_id=model_cfg.id,
                output_format=payload.output_format or config.defaults.output_format,
            ),
        )
        logger.info("Session created id=%s model=%s", record.id, model_cfg.id)
        return record.model_dump(mode="json", exclude={"owner_id"})

    @router.get("/sessions/{session_id}")
    async def get_session(session_id: str, owner_id: str = Depends(require_owner)):
        record = await store.get(session_id, owner_id)
        if record is None:
            raise SessionNotFoundError(session_id)
        return record.model_dump(mode="json", exclude={"owner_id"})

    @router.get("/models")
    async def list_models():
        return {
            "default_model_id": config.defaults.model_id,
            "models": [
                {
                    "id": m.id,
                    "label": m.label,
                    "provider": m.provider,
                    "model": m.model,
                    "available": m.id in config.available_models,
                }
                for m in config.models.values()
            ],
        }

    app.include_router(router)
    return app
