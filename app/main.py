from __future__ import annotations

import errno
import json
import logging
import socket
from pathlib import Path
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field, ValidationError

from config.settings import get_settings
from provider.extract import extract_text
from provider.gemini import get_provider, to_contents


settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="[%(asctime)s] %(levelname)s - %(message)s",
)
logger = logging.getLogger("geminichat")

MISSING_KEY_ERROR = "Missing GEMINI_API_KEY (or API_KEY) in environment."
BODY_TOO_LARGE_ERROR = "Request body too large."

app = FastAPI(title="Gemini Chat Relay", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials="*" not in settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


class InvalidChatRequest(ValueError):
    """Raised when the relay request body does not have the expected shape."""


class RequestTooLarge(Exception):
    """Raised when more body bytes arrive than MAX_BODY_BYTES allows."""


class ChatTurn(BaseModel):
    role: str = Field(..., description="'user' or 'model'; forwarded as-is")
    content: str


class ChatRequest(BaseModel):
    messages: List[ChatTurn]


def parse_chat_request(body: Any) -> ChatRequest:
    messages = body.get("messages") if isinstance(body, dict) else None
    if not isinstance(messages, list):
        raise InvalidChatRequest("messages must be an array")
    try:
        return ChatRequest(messages=messages)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise InvalidChatRequest(f"invalid messages: {problems}") from exc


async def read_body(request: Request, limit: int) -> bytes:
    """Read the request body, giving up once more than ``limit`` bytes arrive.

    Covers chunked uploads that carry no Content-Length for the middleware to check.
    """
    chunks = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            raise RequestTooLarge(f"body exceeds {limit} bytes")
        chunks.append(chunk)
    return b"".join(chunks)


@app.middleware("http")
async def limit_body_size(request: Request, call_next):
    length = request.headers.get("content-length")
    limit = get_settings().max_body_bytes
    if length is not None and length.isdigit() and int(length) > limit:
        logger.warning("Rejected request body of %s bytes (limit %s)", length, limit)
        return JSONResponse(status_code=413, content={"error": BODY_TOO_LARGE_ERROR})
    return await call_next(request)


@app.get("/api/health")
def health() -> Dict[str, Any]:
    current = get_settings()
    return {"status": "ok", "model": current.gemini_model, "hasKey": current.has_key}


@app.post("/api/chat")
async def chat(request: Request):
    try:
        body = json.loads(await read_body(request, get_settings().max_body_bytes))
        chat_request = parse_chat_request(body)

        provider = get_provider()
        if provider is None:
            logger.warning("Chat request refused: no provider credential configured")
            return JSONResponse(status_code=503, content={"error": MISSING_KEY_ERROR})

        current = get_settings()
        contents = to_contents(chat_request.messages)
        logger.info("Incoming chat: turns=%s model=%s", len(contents), current.gemini_model)
        response = await provider.generate(current.gemini_model, contents)
        result = extract_text(response)
        logger.info("Model responded with %s chars", len(result))
        return {"result": result}
    except RequestTooLarge as e:
        logger.warning("Rejected request: %s", e)
        return JSONResponse(status_code=413, content={"error": BODY_TOO_LARGE_ERROR})
    except Exception as e:
        logger.exception("Chat error: %s", e)
        return JSONResponse(status_code=500, content={"error": str(e) or e.__class__.__name__})


def mount_public(target: FastAPI, directory: Path) -> bool:
    """Serve ``directory`` at ``/`` if it exists. Call after the API routes are registered."""
    if not directory.is_dir():
        return False
    target.mount("/", StaticFiles(directory=str(directory), html=True), name="public")
    logger.info("Serving static files from %s", directory)
    return True


# Registered after the API routes so /api/* is never shadowed
mount_public(app, settings.public_dir)


def _port_available(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
        try:
            probe.bind((host, port))
        except OSError as exc:
            if exc.errno == errno.EADDRINUSE:
                return False
            raise
    return True


def find_port(host: str, port: int, attempts: int) -> int:
    """Return the first free port in ``port .. port + attempts``."""
    for candidate in range(port, port + attempts + 1):
        if _port_available(host, candidate):
            return candidate
        if candidate < port + attempts:
            logger.warning("Port %s in use, trying %s...", candidate, candidate + 1)
    raise OSError(errno.EADDRINUSE, f"No free port in range {port}-{port + attempts}")


def serve(host: Optional[str] = None, port: Optional[int] = None) -> None:
    current = get_settings()
    host = host or current.host
    port = port or current.port
    if not current.has_key:
        logger.warning("No GEMINI_API_KEY or API_KEY set. Add it to a .env file.")
    logger.info("Config: env=%s model=%s key_set=%s", current.app_env, current.gemini_model, current.has_key)

    try:
        bound_port = find_port(host, port, current.port_attempts)
    except OSError as exc:
        logger.error("Failed to start server: %s", exc)
        raise SystemExit(1) from exc

    logger.info("Server ready on http://localhost:%s", bound_port)
    uvicorn.run(app, host=host, port=bound_port, log_level=current.log_level.lower())
