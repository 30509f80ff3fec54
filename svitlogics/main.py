import logging
import os
import threading
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, Literal, Optional, Tuple

from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from svitlogics import llm_client, stats, task_store
from svitlogics import ratelimit as _rl_mod
from svitlogics.budget import DISPLAY_GRANULARITY, LANGUAGE_PROFILES, max_chars
from svitlogics.dispatch import TaskDispatcher, run_analysis_task
from svitlogics.errors import (
    AnalysisError,
    CascadeExhausted,
    ConfigurationError,
    EnqueueError,
    FatalUpstreamError,
    NoModelFits,
    StoreError,
    ValidationError,
)
from svitlogics.llm_prompts import system_prompt_for
from svitlogics.task_store import failed_record
from svitlogics.validators import validate_request

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

log = logging.getLogger(__name__)

_rr_cls = None
try:
    from svitlogics.redis_ratelimit import RedisRateLimiter as _rr_cls
except Exception:
    _rr_cls = None

_dispatcher: Optional[TaskDispatcher] = None
_dispatcher_lock = threading.Lock()


def get_dispatcher() -> TaskDispatcher:
    global _dispatcher
    with _dispatcher_lock:
        if _dispatcher is None:
            _dispatcher = TaskDispatcher()
        return _dispatcher


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("startup: cascade=%s", llm_client.status().get("cascade"))
    yield
    global _dispatcher
    with _dispatcher_lock:
        dispatcher, _dispatcher = _dispatcher, None
    if dispatcher is not None:
        log.info("shutdown: waiting for %d background analyses", dispatcher.inflight())
        dispatcher.shutdown(wait=True)


app = FastAPI(title="Svitlogics analysis API", lifespan=lifespan)

allow_origins = [o.strip() for o in os.getenv("ALLOW_ORIGINS", "*").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = str(uuid.uuid4())
    start = time.time()
    request.state.request_id = rid
    response = None
    try:
        response = await call_next(request)
        return response
    finally:
        dur_ms = int((time.time() - start) * 1000)
        log.info(
            "rid=%s method=%s path=%s status=%s dur_ms=%d",
            rid,
            request.method,
            request.url.path,
            getattr(response, "status_code", "?"),
            dur_ms,
        )


class AnalyzeRequest(BaseModel):
    text: str = Field("", description="Text to analyze")
    language: str = Field("", description="Language code of the text: en or uk")


class BackgroundAnalyzeRequest(BaseModel):
    taskId: Optional[str] = None
    text: Optional[str] = None
    language: Optional[str] = None
    systemPrompt: Optional[str] = None


class StatRequest(BaseModel):
    duration: float = Field(gt=0, description="Analysis duration in milliseconds")
    charCount: int = Field(gt=0)
    language: Literal["en", "uk"]


def get_orchestrator() -> llm_client.FallbackOrchestrator:
    return llm_client.build_orchestrator()


def get_orchestrator_factory() -> Callable[[], llm_client.FallbackOrchestrator]:
    """Deferred construction, for handlers that must record a configuration failure themselves."""
    return get_orchestrator


def get_task_store() -> Any:
    return task_store.get_store()


def get_catalog() -> Any:
    return llm_client.get_catalog()


# Choose rate limiter based on environment
_REDIS_URL = os.getenv("REDIS_URL", "").strip()
_rl_instance = None
if _REDIS_URL and _rr_cls and not os.getenv("PYTEST_CURRENT_TEST"):
    try:
        _rl_instance = _rr_cls(_REDIS_URL)
    except Exception:
        log.warning("rate_limit: redis limiter unavailable, using in-process limiter", exc_info=True)
        _rl_instance = None


def _safe_rate_check(bucket: str, key: str) -> Tuple[bool, int, int]:
    """Return (allowed, remaining, reset_ts), preferring the shared redis limiter."""
    if _rl_instance is not None and not os.getenv("PYTEST_CURRENT_TEST"):
        try:
            return _rl_instance.check_and_increment(bucket, key)
        except Exception as exc:
            log.warning("rate_limit: redis check failed, falling back to in-process: %s", exc)
    return _rl_mod.check_and_increment(bucket, key)


def _rate_limit_headers(remaining: int, reset_ts: int, *, limited: bool = False) -> Dict[str, str]:
    headers = {
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": str(reset_ts),
    }
    if limited:
        headers["Retry-After"] = str(max(0, reset_ts - int(time.time())))
    return headers


def _rate_limited_response(remaining: int, reset_ts: int) -> JSONResponse:
    wait_seconds = max(0, reset_ts - int(time.time()))
    return JSONResponse(
        status_code=429,
        content={
            "error": "Too many requests. Please try again later.",
            "reset": reset_ts,
            "retry_after_seconds": wait_seconds,
        },
        headers=_rate_limit_headers(remaining, reset_ts, limited=True),
    )


def _client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded.strip():
        return forwarded.split(",")[0].strip()
    edge_ip = request.headers.get("x-nf-client-connection-ip", "").strip()
    if edge_ip:
        return edge_ip
    return request.client.host if request.client else "anon"


_ERROR_STATUS = (
    (ValidationError, 400),
    (NoModelFits, 413),
    (FatalUpstreamError, 502),
    (CascadeExhausted, 503),
    (ConfigurationError, 503),
    (EnqueueError, 503),
)


@app.exception_handler(AnalysisError)
async def analysis_error_handler(request: Request, exc: AnalysisError) -> JSONResponse:
    for exc_type, status_code in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            content: Dict[str, Any] = {"error": str(exc)}
            details = getattr(exc, "details", None)
            if details:
                content["details"] = details
            return JSONResponse(status_code=status_code, content=content)
    log.error("unhandled analysis error on %s: %r", request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "An internal server error occurred."})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = []
    for e in exc.errors():
        loc = ".".join(str(p) for p in e.get("loc", ()) if p != "body") or "(root)"
        details.append({"field": loc, "message": e.get("msg", "invalid")})
    return JSONResponse(status_code=400, content={"error": "Invalid request body.", "details": details})


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/llm/status")
def llm_status_endpoint() -> Dict[str, Any]:
    return llm_client.status()


@app.get("/llm/probe")
def llm_probe_endpoint() -> Dict[str, Any]:
    return llm_client.probe()


@app.get("/limits")
def limits_endpoint(catalog=Depends(get_catalog)) -> Dict[str, Any]:
    """Character budget of each cascade model per language, rounded for display."""
    out: Dict[str, Any] = {}
    for code, profile in LANGUAGE_PROFILES.items():
        models = [
            {
                "model": m.display_name,
                "max_chars": max(0, max_chars(m, profile, granularity=DISPLAY_GRANULARITY)),
            }
            for m in catalog.active_cascade()
        ]
        out[code] = {
            "max_chars": max((m["max_chars"] for m in models), default=0),
            "models": models,
        }
    return out


@app.post("/analyze")
def analyze_endpoint(
    req: AnalyzeRequest,
    request: Request,
    orchestrator: llm_client.FallbackOrchestrator = Depends(get_orchestrator),
):
    """Run the whole cascade and answer with the analysis or a single error."""
    client_key = _client_key(request)
    allowed, remaining, reset_ts = _safe_rate_check("analyze", client_key)
    log.info("rate_limit check allowed=%s remaining=%s", allowed, remaining)
    if not allowed:
        return _rate_limited_response(remaining, reset_ts)

    validate_request(req.model_dump())
    started = time.monotonic()
    result = orchestrator.analyze(req.text, req.language, system_prompt_for(req.language))
    log.info(
        "analyze: done model=%s chars=%d dur_ms=%d",
        result.get("usedModelName"),
        len(req.text),
        int((time.monotonic() - started) * 1000),
    )
    return JSONResponse(result, headers=_rate_limit_headers(remaining, reset_ts))


@app.post("/analyze/trigger")
def analyze_trigger(
    req: AnalyzeRequest,
    request: Request,
    orchestrator: llm_client.FallbackOrchestrator = Depends(get_orchestrator),
    store: Any = Depends(get_task_store),
    dispatcher: TaskDispatcher = Depends(get_dispatcher),
):
    """Queue an analysis and return its task id right away (202)."""
    client_key = _client_key(request)
    allowed, remaining, reset_ts = _safe_rate_check("analyze", client_key)
    if not allowed:
        return _rate_limited_response(remaining, reset_ts)

    validate_request(req.model_dump())
    task_id = str(uuid.uuid4())
    dispatcher.submit(
        task_id,
        run_analysis_task,
        task_id,
        req.text,
        req.language,
        system_prompt_for(req.language),
        orchestrator,
        store,
    )
    log.info("trigger: background task %s queued", task_id)
    return JSONResponse({"taskId": task_id}, status_code=202, headers=_rate_limit_headers(remaining, reset_ts))


@app.post("/analyze/background")
def analyze_background(
    req: BackgroundAnalyzeRequest,
    make_orchestrator: Callable[[], llm_client.FallbackOrchestrator] = Depends(get_orchestrator_factory),
    store: Any = Depends(get_task_store),
) -> Response:
    """Worker entry: runs one analysis synchronously and stores its terminal record."""
    body = req.model_dump()
    try:
        validate_request(body, require_task=True, require_prompt=True)
    except ValidationError as exc:
        log.error("background: invoked with missing parameters: %s", getattr(exc, "details", exc))
        if req.taskId:
            try:
                store.set(req.taskId, failed_record("Background function invoked with missing parameters."))
            except StoreError:
                log.exception("background: could not record failure for task %s", req.taskId)
        return Response(status_code=400)

    try:
        orchestrator = make_orchestrator()
    except ConfigurationError as exc:
        log.error("background: task %s cannot run: %s", req.taskId, exc)
        try:
            store.set(req.taskId, failed_record(str(exc)))
        except StoreError:
            log.exception("background: could not record failure for task %s", req.taskId)
        return Response(status_code=500)

    ok = run_analysis_task(req.taskId, req.text, req.language, req.systemPrompt, orchestrator, store)
    return Response(status_code=200 if ok else 500)


@app.get("/analyze/status")
def analyze_status(taskId: Optional[str] = None, store: Any = Depends(get_task_store)):
    """200 with the terminal record, 202 while the task has not finished."""
    if not taskId or not taskId.strip():
        return JSONResponse(status_code=400, content={"error": 'Query parameter "taskId" is required.'})
    try:
        record = store.get(taskId)
    except StoreError:
        log.exception("status: store read failed for task %s", taskId)
        return JSONResponse(status_code=500, content={"error": "An internal server error occurred."})
    if record is None:
        return JSONResponse(status_code=202, content={"status": "pending"})
    return JSONResponse(record)


@app.post("/stats", status_code=201)
def record_stat(req: StatRequest):
    try:
        entry = stats.record(req.duration, req.charCount, req.language)
    except StoreError:
        log.exception("stats: failed to record entry")
        return JSONResponse(status_code=500, content={"error": "Internal Server Error"})
    return {"status": "recorded", "entry": entry}


@app.get("/stats")
def get_stats_endpoint(response: Response):
    try:
        data = stats.get_stats()
    except StoreError:
        log.exception("stats: failed to read history")
        return JSONResponse(status_code=500, content={"error": "Internal Server Error"})
    response.headers["Cache-Control"] = "public, max-age=300"
    return data


@app.get("/stats/estimate")
def estimate_endpoint(charCount: int, language: Literal["en", "uk"]):
    if charCount <= 0:
        return JSONResponse(status_code=400, content={"error": "charCount must be positive"})
    try:
        estimated = stats.estimate_duration_ms(charCount, language)
    except StoreError:
        log.exception("stats: failed to read history for estimate")
        estimated = int(round(charCount * stats.DEFAULT_MS_PER_CHAR[language]))
    return {"charCount": charCount, "language": language, "estimatedDurationMs": estimated}
