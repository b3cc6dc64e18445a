# eea/service_http.py
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, Request, Response
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from .attest import Attestor, RequestTrace
from .config import Settings, load_settings
from .errors import EEAError, NotFound
from .hashing import hash_prefix
from .logging import configure_json_logging, get_logger, log_request, new_request_id, reset
from .schemas import AttestationView, AttestOut, ErrorOut, FetchOut, HealthOut
from .storage import KeyValueStore, make_kv
from .validation import format_rfc3339_ms


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


@dataclass
class HttpMetrics:
    """
    Prometheus instruments bound to one application.

    Each app owns its registry so several apps (tests, workers) can coexist
    in a process without duplicate-collector errors.
    """

    registry: CollectorRegistry
    req_counter: Counter
    req_latency: Histogram
    attestations: Counter
    errors: Counter

    @classmethod
    def create(cls) -> "HttpMetrics":
        registry = CollectorRegistry(auto_describe=True)
        return cls(
            registry=registry,
            req_counter=Counter(
                "eea_http_requests_total",
                "HTTP requests",
                ["route", "status"],
                registry=registry,
            ),
            req_latency=Histogram(
                "eea_http_request_latency_seconds",
                "HTTP request latency in seconds",
                ["route"],
                registry=registry,
            ),
            attestations=Counter(
                "eea_attestations_total",
                "Attestation create outcomes",
                ["outcome"],
                registry=registry,
            ),
            errors=Counter(
                "eea_errors_total",
                "Structured error responses",
                ["code"],
                registry=registry,
            ),
        )

    def mark_request(self, route: str, status: int, elapsed_s: float) -> None:
        self.req_counter.labels(route=route, status=str(status)).inc()
        self.req_latency.labels(route=route).observe(max(0.0, elapsed_s))


def _route_label(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


def _content_length(request: Request) -> Optional[int]:
    raw = request.headers.get("content-length")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


async def _read_body_with_limit(request: Request, limit: int) -> bytes:
    """
    Read at most ``limit + 1`` bytes of the request body.

    An oversize declared Content-Length is not read at all. An undeclared or
    understated one is streamed and cut off one byte past the limit. The
    413 itself is raised by ``Attestor.attest`` after authentication and
    rate limiting.
    """
    declared = _content_length(request)
    if declared is not None and declared > limit:
        return b""

    chunks: List[bytes] = []
    total = 0
    async for chunk in request.stream():
        if not chunk:
            continue
        chunks.append(bytes(chunk))
        total += len(chunk)
        if total > limit:
            break
    return b"".join(chunks)[: limit + 1]


def _error_response(exc: EEAError, trace: Optional[RequestTrace]) -> JSONResponse:
    rid = trace.request_id if trace is not None else ""
    if trace is not None:
        trace.error_code = exc.code
    return JSONResponse(
        status_code=exc.http_status,
        content=exc.to_body(rid),
        headers=exc.headers or None,
    )


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Optional[Settings] = None,
    *,
    kv: Optional[KeyValueStore] = None,
    clock: Optional[Callable[[], float]] = None,
) -> FastAPI:
    """
    Build the attestation HTTP surface.

    Routes:
      - GET  /health            unauthenticated liveness + identity
      - POST /attest            create (or idempotently return) an attestation
      - GET  /attest/{id}       fetch a stored attestation
      - GET  /metrics           Prometheus exposition for this app

    ``kv`` and ``clock`` are injectable so tests can run against an
    in-memory store and a fixed time.
    """
    settings = settings or load_settings()
    clock = clock or time.time
    kv = kv if kv is not None else make_kv(settings.kv_dsn, clock=clock)

    configure_json_logging(level=settings.log_level, service=settings.service_name)
    logger = get_logger("eea.http")

    app = FastAPI(
        title=settings.service_name,
        version=settings.version,
        openapi_url="/openapi.json" if settings.enable_docs else None,
        docs_url="/docs" if settings.enable_docs else None,
        redoc_url="/redoc" if settings.enable_docs else None,
    )

    attestor = Attestor(settings, kv, clock=clock)
    metrics = HttpMetrics.create()

    app.state.settings = settings
    app.state.kv = kv
    app.state.attestor = attestor
    app.state.metrics = metrics

    # CORS: the public API is called from browsers on arbitrary origins
    if settings.cors_allow_all:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type", "x-api-key"],
            expose_headers=[
                "x-request-id",
                "Retry-After",
                "X-RateLimit-Limit",
                "X-RateLimit-Remaining",
                "X-RateLimit-Reset",
            ],
        )

    # -----------------------------------------------------------------------
    # Middleware: request id, access log, metrics, rate headers
    # -----------------------------------------------------------------------

    @app.middleware("http")
    async def request_envelope(request: Request, call_next):
        trace = RequestTrace(request_id=new_request_id())
        request.state.trace = trace
        t0 = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            reset()
        elapsed = max(0.0, time.perf_counter() - t0)

        response.headers["x-request-id"] = trace.request_id
        for k, v in trace.rate_headers.items():
            response.headers[k] = v

        metrics.mark_request(_route_label(request), response.status_code, elapsed)
        log_request(
            logger,
            request_id=trace.request_id,
            method=request.method,
            route=request.url.path,
            status=response.status_code,
            latency_ms=elapsed * 1000.0,
            key_id=trace.key_id,
            event_hash_prefix=hash_prefix(trace.event_hash or ""),
            error_code=trace.error_code,
        )
        return response

    # -----------------------------------------------------------------------
    # Error mapping
    # -----------------------------------------------------------------------

    @app.exception_handler(EEAError)
    async def eea_error_handler(request: Request, exc: EEAError) -> JSONResponse:
        metrics.errors.labels(code=exc.code).inc()
        return _error_response(exc, getattr(request.state, "trace", None))

    @app.exception_handler(StarletteHTTPException)
    async def route_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code not in (404, 405):
            return await http_exception_handler(request, exc)
        err = NotFound(f"Route not found: {request.method} {request.url.path}")
        metrics.errors.labels(code=err.code).inc()
        return _error_response(err, getattr(request.state, "trace", None))

    # -----------------------------------------------------------------------
    # Endpoints
    # -----------------------------------------------------------------------

    @app.get("/metrics")
    def prometheus_metrics() -> Response:
        return Response(generate_latest(metrics.registry), media_type=CONTENT_TYPE_LATEST)

    @app.get("/health", response_model=HealthOut)
    def health() -> Dict[str, Any]:
        return HealthOut(
            service=settings.service_name,
            version=settings.version,
            timestamp=format_rfc3339_ms(clock()),
        ).model_dump()

    @app.post(
        "/attest",
        status_code=201,
        responses={
            200: {"model": AttestOut, "description": "Already attested (idempotent)"},
            **{s: {"model": ErrorOut} for s in (400, 401, 413, 429, 500)},
        },
    )
    async def attest(request: Request) -> JSONResponse:
        trace: RequestTrace = request.state.trace
        body = await _read_body_with_limit(request, settings.max_body_bytes)
        outcome = await run_in_threadpool(
            attestor.attest,
            request.headers.get("x-api-key"),
            body,
            trace,
            content_length=_content_length(request),
        )
        rec = outcome.record
        out = AttestOut(
            attestation_id=rec.attestation_id,
            event_hash=rec.event_hash,
            attestation_sig=rec.attestation_sig,
            schema_version=rec.schema_version,
            attested_at=rec.attested_at,
            idempotent=True if outcome.idempotent else None,
        )
        metrics.attestations.labels(
            outcome="idempotent" if outcome.idempotent else "minted"
        ).inc()
        return JSONResponse(
            status_code=200 if outcome.idempotent else 201,
            content=out.model_dump(exclude_none=True),
        )

    @app.get(
        "/attest/{attestation_id}",
        response_model=FetchOut,
        responses={s: {"model": ErrorOut} for s in (401, 404, 500)},
    )
    async def fetch(attestation_id: str, request: Request) -> Dict[str, Any]:
        trace: RequestTrace = request.state.trace
        rec = await run_in_threadpool(
            attestor.fetch,
            request.headers.get("x-api-key"),
            attestation_id,
            trace,
        )
        return FetchOut(record=AttestationView(**rec.to_dict())).model_dump()

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        create_app(),
        host="127.0.0.1",
        port=8000,
        log_config=None,
    )
