import logging
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from typing import Optional

from muse.models import ContextBundle, GenerateRequest, PovRequest
from muse.loader import config
from muse.handler import MissingFragmentError
from muse.llm_service import GenerationExhaustedError, MissingCredentialError, lifespan

# Настройка логирования
log_cfg = config.get("logging", {}) or {}
logging.basicConfig(
    filename=log_cfg.get("file"),
    level=log_cfg.get("level", "INFO"),
    format="%(asctime)s [%(levelname)s] %(message)s",
    encoding="utf-8"
)
logger = logging.getLogger(__name__)

app = FastAPI(lifespan=lifespan)

allow_origins = config.get("cors", {}).get("allow_origins", [])
if not allow_origins or allow_origins == ["*"]:
    allow_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
)


@app.exception_handler(RequestValidationError)
async def invalid_body(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


async def run_pipeline(request: Request, req: GenerateRequest, bundle: Optional[ContextBundle] = None, missing_message: str = "No fragment provided"):
    """Запускает обработчик и переводит ошибки в HTTP-ответы."""
    client_ip = request.client.host if request.client else "unknown"
    try:
        response = await request.app.state.handler.handle(req, bundle, missing_fragment_message=missing_message)
    except MissingFragmentError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    except MissingCredentialError as e:
        logger.error("No API key found in configuration")
        return JSONResponse(status_code=500, content={"error": "API key not configured", "details": str(e)})
    except GenerationExhaustedError as e:
        return JSONResponse(status_code=500, content={"error": str(e), "details": e.last_reason})
    except Exception as e:
        logger.exception(f"IP: {client_ip} | Pipeline error: {e}")
        return JSONResponse(status_code=500, content={"error": "Devil Muse choked", "details": str(e)})

    logger.info(
        f"IP: {client_ip} | Fragment: {len(req.fragment)} chars | Model: {response.model} | "
        f"Generated: {response.chars_generated} chars | Fetch: {response.fetch_time} ms | "
        f"Total: {response.processing_time} ms"
    )
    return response.model_dump(by_alias=True)


@app.get("/")
async def health():
    return {
        "status": "alive",
        "message": "Devil Muse server is breathing",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.post("/generate")
async def generate(req: GenerateRequest, request: Request):
    return await run_pipeline(request, req)


@app.post("/devil-pov")
async def devil_pov(req: PovRequest, request: Request):
    # Первая версия API: контекст приходит в теле запроса, хранилище не используется
    return await run_pipeline(request, req.to_generate_request(), req.to_bundle(), "No chapter provided")


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config["uvicorn"].get("host", "0.0.0.0"),
        port=config["uvicorn"].get("port", 3333),
        reload=config["uvicorn"].get("reload", False),
        workers=config["uvicorn"].get("workers", 1),
        log_level=config["uvicorn"].get("log_level", "info"),
    )
