from __future__ import annotations

import asyncio
import json
import os
import threading
import time
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from constraints import ConstraintProfile, load_profiles
from core.access_tokens import TokenError, issue_token, password_matches, verify_token
from core.page_fetch import PageFetchError, fetch_product_page
from language_model import GenerationBackend, GenerationError, OpenAIResponsesModel
from logger import get_logger, log_event, log_exception, log_json
from pipeline_service import ListingPipeline, collapse_variants
from settings import Settings

APP_VERSION = "1.0.0"
MAX_REQUEST_TIMEOUT = float(os.getenv("MAX_REQUEST_TIMEOUT_S", "300"))

logger = get_logger('api.main')


# Standardized error response utilities
class APIError(Exception):
    """Custom exception for API errors with standardized format"""
    def __init__(self, message: str, status_code: int = 500, error_code: str = None, details: Dict[str, Any] = None):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code or f"ERROR_{status_code}"
        self.details = details or {}
        super().__init__(self.message)


def _make_json_safe(obj: Any) -> Any:
    """Recursively convert objects to JSON-serializable forms."""
    try:
        json.dumps(obj)
        return obj
    except TypeError:
        pass
    if isinstance(obj, BaseException):
        return str(obj)
    if isinstance(obj, dict):
        return {str(_make_json_safe(k)): _make_json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [_make_json_safe(v) for v in obj]
    return repr(obj)


def create_error_response(message: str, status_code: int = 500, error_code: str = None, details: Dict[str, Any] = None) -> JSONResponse:
    """Create a standardized error response (always JSON-serializable)."""
    error_data = {
        "error": message,
        "status_code": status_code,
        "error_code": error_code or f"ERROR_{status_code}",
        "timestamp": datetime.now().isoformat(),
        "details": details or {}
    }
    return JSONResponse(_make_json_safe(error_data), status_code=status_code)


app = FastAPI(title="Amazon Listing Generator API", version=APP_VERSION)


@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    logger.warning(f"APIError: {exc.message}")
    return create_error_response(exc.message, exc.status_code, exc.error_code, exc.details)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    if first.get("type") == "json_invalid":
        return create_error_response("Invalid JSON body", 400, "INVALID_JSON")
    loc = [str(p) for p in first.get("loc", ()) if p != "body"]
    field = ".".join(loc) or "body"
    return create_error_response(f"Invalid {field}", 400, "REQUEST_VALIDATION_ERROR", {"detail": errors})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log_exception("UNHANDLED_ERROR", exc)
    return create_error_response("Internal server error", 500, "INTERNAL_ERROR")


app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request timeout middleware
@app.middleware("http")
async def request_timeout_middleware(request, call_next):
    try:
        return await asyncio.wait_for(call_next(request), timeout=MAX_REQUEST_TIMEOUT)
    except asyncio.TimeoutError:
        return create_error_response(
            f"Request exceeded {int(MAX_REQUEST_TIMEOUT)} seconds", 408, "REQUEST_TIMEOUT"
        )


# Request models
class AuthRequest(BaseModel):
    password: Optional[str] = None


class GenerateRequest(BaseModel):
    marketplace: Optional[str] = None
    brand_name: Optional[str] = None
    brand_voice: Optional[str] = None
    usp: Optional[str] = None
    user_prompt: Optional[str] = None
    product_url: Optional[str] = None
    variants: Any = 1
    profile: Optional[str] = None

    def variant_count(self) -> int:
        """3 only for an exact 3 (number or numeric string); anything else is 1."""
        value = self.variants
        if isinstance(value, bool):
            return 1
        if isinstance(value, str):
            value = value.strip()
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 1
        return collapse_variants(3 if number == 3 else 1)


# Process-wide singletons (read-only after construction)
_settings: Optional[Settings] = None
_profiles: Optional[Dict[str, ConstraintProfile]] = None
_models: Dict[str, OpenAIResponsesModel] = {}
_global_lock = threading.RLock()


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        with _global_lock:
            if _settings is None:
                _settings = Settings.load()
    return _settings


def get_profiles(settings: Settings = Depends(get_settings)) -> Dict[str, ConstraintProfile]:
    global _profiles
    if _profiles is None:
        with _global_lock:
            if _profiles is None:
                _profiles = load_profiles(settings.profiles_path)
    return _profiles


def get_backend(settings: Settings = Depends(get_settings)) -> GenerationBackend:
    if not settings.openai_api_key:
        raise APIError("OPENAI_API_KEY missing in runtime env", 500, "CONFIGURATION_ERROR")
    key = f"{settings.openai_model}:{settings.openai_api_key}"
    with _global_lock:
        if key not in _models:
            _models[key] = OpenAIResponsesModel(settings.openai_api_key, model=settings.openai_model)
        return _models[key]


def require_access_token(request: Request, settings: Settings = Depends(get_settings)) -> None:
    if not settings.require_access_token:
        return
    if not settings.access_token_secret:
        raise APIError("ACCESS_TOKEN_SECRET missing in env", 500, "CONFIGURATION_ERROR")
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise APIError("Missing access token", 401, "UNAUTHORIZED")
    try:
        verify_token(token.strip(), settings.access_token_secret)
    except TokenError as e:
        raise APIError(str(e), 401, "UNAUTHORIZED")


@app.get("/")
async def root() -> Dict[str, Any]:
    """Root endpoint to show server is running."""
    return {
        "message": "Amazon Listing Generator API is running",
        "version": APP_VERSION,
        "status": "online",
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/health")
async def health(settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    health_status: Dict[str, Any] = {
        "status": "degraded",
        "version": APP_VERSION,
        "timestamp": time.time(),
        "checks": {},
    }
    all_checks_passed = True

    health_status["checks"]["openai"] = "configured" if settings.openai_api_key else "not_configured"
    all_checks_passed = all_checks_passed and bool(settings.openai_api_key)

    try:
        profiles = get_profiles(settings)
        health_status["checks"]["profiles"] = sorted(profiles)
        health_status["checks"]["default_profile"] = (
            settings.default_profile if settings.default_profile in profiles else f"missing: {settings.default_profile}"
        )
        all_checks_passed = all_checks_passed and settings.default_profile in profiles
    except (OSError, ValueError) as e:
        health_status["checks"]["profiles"] = f"error: {str(e)}"
        all_checks_passed = False

    health_status["checks"]["web_search"] = settings.enable_web_search
    health_status["checks"]["access_token_required"] = settings.require_access_token
    if all_checks_passed:
        health_status["status"] = "ok"
    return health_status


@app.post("/api/auth")
async def auth(body: AuthRequest, settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    if not settings.access_password:
        raise APIError("ACCESS_PASSWORD missing in env", 500, "CONFIGURATION_ERROR")
    if not settings.access_token_secret:
        raise APIError("ACCESS_TOKEN_SECRET missing in env", 500, "CONFIGURATION_ERROR")
    if not password_matches(body.password or "", settings.access_password):
        log_event("AUTH_FAILED", "invalid password")
        raise APIError("Invalid password", 401, "UNAUTHORIZED")
    token, exp = issue_token(settings.access_token_secret, settings.access_token_ttl_s)
    return {"token": token, "exp": exp}


def _product_info(body: GenerateRequest, settings: Settings) -> str:
    prompt = (body.user_prompt or "").strip()
    url = (body.product_url or "").strip()
    if not url:
        return prompt
    try:
        page = fetch_product_page(url, timeout_s=settings.page_fetch_timeout_s, max_chars=settings.page_fetch_max_chars)
    except PageFetchError as e:
        raise APIError(e.message, e.status_code, "PAGE_FETCH_ERROR", {"url": url})
    if prompt:
        return f"{prompt}\n\nProduct page ({url}):\n{page}"
    return f"Product page ({url}):\n{page}"


def _run_generate(body: GenerateRequest, settings: Settings, profiles: Dict[str, ConstraintProfile], backend: GenerationBackend) -> Dict[str, Any]:
    marketplace = (body.marketplace or "").strip()
    brand_name = (body.brand_name or "").strip()
    if not marketplace:
        raise APIError("Missing marketplace", 400, "MISSING_FIELD", {"field": "marketplace"})
    if not brand_name:
        raise APIError("Missing brand_name", 400, "MISSING_FIELD", {"field": "brand_name"})
    if not (body.user_prompt or "").strip() and not (body.product_url or "").strip():
        raise APIError("Missing user_prompt", 400, "MISSING_FIELD", {"field": "user_prompt"})

    profile_name = (body.profile or settings.default_profile).strip()
    profile = profiles.get(profile_name)
    if profile is None:
        raise APIError(f"Unknown profile: {profile_name}", 400, "UNKNOWN_PROFILE", {"available": sorted(profiles)})

    product_info = _product_info(body, settings)
    pipeline = ListingPipeline(settings, backend, profile)
    try:
        result = pipeline.run(
            brand_name=brand_name,
            marketplace=marketplace,
            product_info=product_info,
            usp=(body.usp or "").strip(),
            brand_voice=(body.brand_voice or "").strip(),
            variants=body.variant_count(),
        )
    except GenerationError as e:
        raise APIError(e.message, e.status_code, f"GENERATION_{e.kind.upper()}")
    log_json(
        "GENERATE_DONE",
        "listing generated",
        profile=profile.name,
        valid=result.valid,
        violations=len(result.report.violations),
        passes=[s.status for s in result.stages],
    )
    return result.to_payload()


@app.post("/api/generate", dependencies=[Depends(require_access_token)])
async def generate(
    body: GenerateRequest,
    settings: Settings = Depends(get_settings),
    profiles: Dict[str, ConstraintProfile] = Depends(get_profiles),
    backend: GenerationBackend = Depends(get_backend),
) -> Dict[str, Any]:
    # Backend calls block; keep them off the event loop
    return await run_in_threadpool(_run_generate, body, settings, profiles, backend)


def create_app() -> FastAPI:
    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")), reload=False)
