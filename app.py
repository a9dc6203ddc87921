from typing import Any, Dict, Optional

import logging
import threading
import time

from fastapi import Body, Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import configure_logging, get_settings_obj
from auth.session import get_request_actor
from logic.feature_flags import FeatureFlagValidationError
from logic.validation import validate_max_age_days
from services.feature_flag_service import FeatureFlagService
from services.rate_limiter import RateLimiter, RateLimitResult

logger = logging.getLogger(__name__)

settings = get_settings_obj()

FLAGS_ENDPOINT = "feature-flags"

flag_service = FeatureFlagService.from_settings(settings)
rate_limiter = RateLimiter(cleanup_probability=settings.RATE_LIMIT_CLEANUP_PROBABILITY)


app = FastAPI(
    title="Feature Flags API",
    description="File-backed feature flags with locking, backups and rate limiting.",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization", "X-Actor"],
)


def get_flag_service() -> FeatureFlagService:
    return flag_service


def get_rate_limiter() -> RateLimiter:
    return rate_limiter


# --------------------------------------------------
# Rate limiting
# --------------------------------------------------

class RateLimitExceeded(Exception):
    def __init__(self, result: RateLimitResult):
        super().__init__("Too many requests")
        self.result = result


@app.exception_handler(RateLimitExceeded)
def _rate_limit_exceeded(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content=exc.result.to_dict(),
        headers={"Retry-After": str(exc.result.retry_after or 0)},
    )


def rate_limited(endpoint: str):
    def _check(
        request: Request,
        response: Response,
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> None:
        result = limiter.check(request, endpoint)
        if not result.success:
            raise RateLimitExceeded(result)
        if result.remaining is not None:
            response.headers["X-RateLimit-Remaining"] = str(result.remaining)

    return _check


# --------------------------------------------------
# Backup pruning
# --------------------------------------------------

def _backup_cleanup_loop() -> None:
    interval = settings.BACKUP_CLEANUP_INTERVAL_SECONDS
    while True:
        try:
            flag_service.cleanup_old_backups(settings.BACKUP_MAX_AGE_DAYS)
        except Exception:
            logger.exception("[backups] cleanup error")
        time.sleep(interval)


@app.on_event("startup")
def _startup() -> None:
    configure_logging(settings.LOG_LEVEL)
    flag_service.initialize()

    if settings.BACKUP_CLEANUP_ENABLED:
        t = threading.Thread(target=_backup_cleanup_loop, daemon=True)
        t.start()


# --------------------------------------------------
# Routes
# --------------------------------------------------

@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/feature-flags", dependencies=[Depends(rate_limited(FLAGS_ENDPOINT))])
def get_feature_flags(service: FeatureFlagService = Depends(get_flag_service)) -> Dict[str, bool]:
    try:
        return service.get_flags()
    except OSError as e:
        logger.error("[feature_flags] read failed: %s", e)
        raise HTTPException(status_code=503, detail="Feature flags are unavailable.")
    except ValueError as e:
        logger.error("[feature_flags] stored flags are invalid: %s", e)
        raise HTTPException(status_code=500, detail="Stored feature flags are invalid.")


@app.post("/api/feature-flags", dependencies=[Depends(rate_limited(FLAGS_ENDPOINT))])
def update_feature_flags(
    request: Request,
    body: Dict[str, Any] = Body(...),
    service: FeatureFlagService = Depends(get_flag_service),
):
    actor = get_request_actor(request)
    try:
        return service.update_flags(body, user=actor)
    except FeatureFlagValidationError as e:
        return JSONResponse(status_code=400, content={"error": str(e), "fields": e.fields})
    except OSError as e:
        logger.error("[feature_flags] write failed: %s", e)
        raise HTTPException(status_code=503, detail="Feature flags are unavailable.")
    except ValueError as e:
        logger.error("[feature_flags] stored flags are invalid: %s", e)
        raise HTTPException(status_code=500, detail="Stored feature flags are invalid.")


@app.post("/api/feature-flags/cleanup", dependencies=[Depends(rate_limited(FLAGS_ENDPOINT))])
def cleanup_backups(
    days: Optional[str] = None,
    service: FeatureFlagService = Depends(get_flag_service),
) -> Dict[str, Any]:
    try:
        max_age_days = validate_max_age_days(settings.BACKUP_MAX_AGE_DAYS if days is None else days)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        removed = service.cleanup_old_backups(max_age_days)
    except OSError as e:
        logger.error("[backups] cleanup failed: %s", e)
        raise HTTPException(status_code=503, detail="Backups are unavailable.")
    return {"ok": True, "removed": len(removed)}


@app.get("/api/rate-limit/status")
def rate_limit_status(
    request: Request,
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> Dict[str, Any]:
    status = limiter.status(request, FLAGS_ENDPOINT)
    if status is None:
        return {"remaining": None}
    return {"remaining": status.remaining, "resetTime": status.reset_time}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app:app", host="0.0.0.0", port=8000, reload=True)
