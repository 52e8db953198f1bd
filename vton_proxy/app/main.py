from __future__ import annotations

import json
import logging
import time

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from . import config
from .body_limit import BodySizeLimitMiddleware
from .engines import IdmVtonEngine
from .errors import TryOnError, classify, error_message
from .metrics import increment, observe_latency, snapshot
from .remote import RemoteClientProvider
from .tryon_pipeline import TryOnPipeline, utc_timestamp
from .validation import TryOnRequest, validate_request


logger = logging.getLogger(__name__)


app = FastAPI(
    title="VTON Proxy",
    version="0.2.0",
    description="Virtual try-on proxy in front of the hosted IDM-VTON model.",
)

# Added before CORS so the CORS layer also wraps 413 responses.
app.add_middleware(BodySizeLimitMiddleware)

if config.CORS_ALLOW_ORIGIN_REGEX is None and config.CORS_ALLOW_ORIGINS == ["*"]:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ALLOW_ORIGINS,
        allow_origin_regex=config.CORS_ALLOW_ORIGIN_REGEX,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.state.remote_client = RemoteClientProvider()


def get_remote_client(request: Request) -> RemoteClientProvider:
    return request.app.state.remote_client


def get_tryon_pipeline(
    remote: RemoteClientProvider = Depends(get_remote_client),
) -> TryOnPipeline:
    return TryOnPipeline(IdmVtonEngine(remote))


@app.middleware("http")
async def log_and_measure_requests(request: Request, call_next):
    start = time.perf_counter()
    label = f"{request.method} {request.url.path}"
    response = await call_next(request)
    duration = time.perf_counter() - start
    increment("requests_total", label)
    observe_latency("http_request_seconds", label, duration)
    response.headers["X-Process-Time"] = f"{duration:.3f}s"
    logger.info("%s %s -> %s (%.3fs)", request.method, request.url.path, response.status_code, duration)
    return response


@app.exception_handler(TryOnError)
async def tryon_error_handler(request: Request, exc: TryOnError):
    classified = classify(exc)
    logger.error(
        "%s %s failed with %s (%s): %s",
        request.method,
        request.url.path,
        classified.status_code,
        classified.kind.value,
        classified.raw,
    )
    return JSONResponse(status_code=classified.status_code, content=classified.to_payload())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("%s %s raised an unexpected error", request.method, request.url.path)
    classified = classify(TryOnError(error_message(exc)))
    return JSONResponse(status_code=classified.status_code, content=classified.to_payload())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.info("%s %s: malformed request body", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "status": "error",
            "message": "Request body must be a JSON object with personImageBase64 and garmentImageBase64.",
            "errorType": "validation",
            "error": str(exc.errors()),
        },
    )


@app.get("/healthz")
async def healthz():
    return {"ok": True}


@app.get("/metrics")
async def metrics():
    return JSONResponse(status_code=status.HTTP_200_OK, content=snapshot())


async def _health_payload(remote: RemoteClientProvider, connect: bool) -> JSONResponse:
    payload = {
        "status": "ok",
        "timestamp": utc_timestamp(),
        "hf_token_configured": remote.token_configured,
        "model": remote.space_id,
    }
    if not connect:
        return JSONResponse(status_code=status.HTTP_200_OK, content=payload)
    connected = await remote.check()
    payload["client_connected"] = connected
    if not connected:
        payload["status"] = "service_unavailable"
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=payload)
    return JSONResponse(status_code=status.HTTP_200_OK, content=payload)


@app.get("/api/health")
async def api_health(
    connect: bool = False,
    remote: RemoteClientProvider = Depends(get_remote_client),
):
    return await _health_payload(remote, connect)


@app.get("/api/virtual-tryon/health")
async def virtual_tryon_health(remote: RemoteClientProvider = Depends(get_remote_client)):
    return await _health_payload(remote, connect=True)


async def _process(body: TryOnRequest, pipeline: TryOnPipeline, result_key: str) -> JSONResponse:
    validate_request(body)
    result = await pipeline.run(person_image=body.person_image, garment_image=body.garment_image)
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={
            "status": "success",
            result_key: result.image_base64,
            "timestamp": result.timestamp,
        },
    )


@app.post("/api/virtual-tryon/process")
async def virtual_tryon_process(
    body: TryOnRequest,
    pipeline: TryOnPipeline = Depends(get_tryon_pipeline),
):
    return await _process(body, pipeline, "processed_image_base64")


@app.post("/api/vton/process")
async def vton_process(
    body: TryOnRequest,
    pipeline: TryOnPipeline = Depends(get_tryon_pipeline),
):
    return await _process(body, pipeline, "result")


@app.get("/widget.js")
async def widget_script():
    script_path = config.STATIC_DIR / "widget.js"
    try:
        script = script_path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.error("Error serving widget from %s: %s", script_path, exc)
        return PlainTextResponse("Error loading widget script.", status_code=500)
    injected = f"window.VTON_API_URL = {json.dumps(config.API_URL)};\n{script}"
    return Response(
        content=injected,
        media_type="application/javascript",
        headers={"Access-Control-Allow-Origin": "*"},
    )


def run() -> None:
    import uvicorn

    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logger.info("Widget URL: %s/widget.js", config.API_URL)
    logger.info("Health check: %s/api/health", config.API_URL)
    logger.info("API endpoint: POST %s/api/virtual-tryon/process", config.API_URL)
    uvicorn.run(app, host="0.0.0.0", port=config.PORT, log_level=config.LOG_LEVEL.lower())
