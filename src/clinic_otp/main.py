"""FastAPI application entry point."""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from clinic_otp.api.router import router as otp_router
from clinic_otp.config import settings
from clinic_otp.database.engine import init_db
from clinic_otp.otp.store import OTPStore
from clinic_otp.services.verification import build_gate

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

logger = logging.getLogger(__name__)


async def sweep_expired_codes(store: OTPStore, interval: float) -> None:
    """Periodically drop expired codes; reads re-check expiry regardless."""
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await store.purge_expired()
        except Exception:
            logger.exception("Expired OTP sweep failed")
            continue
        if removed:
            logger.debug("Swept %d expired OTP(s)", removed)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle hook."""
    logger.info("Starting %s …", settings.app_name)
    if settings.otp_store_backend == "database":
        await init_db()
        logger.info("Database initialised")
    if getattr(app.state, "gate", None) is None:
        app.state.gate = build_gate()

    sweeper = None
    if settings.otp_sweep_interval_seconds > 0:
        sweeper = asyncio.create_task(
            sweep_expired_codes(app.state.gate.store, settings.otp_sweep_interval_seconds)
        )
    yield
    logger.info("Shutting down %s …", settings.app_name)
    if sweeper is not None:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper


app = FastAPI(
    title=settings.app_name,
    description="One-time passcode issuance and verification for clinic bookings",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(otp_router)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Answer malformed OTP requests with the same body shape as other failures."""
    fields = sorted({str(err["loc"][-1]) for err in exc.errors() if err.get("loc")})
    logger.info("Rejected %s: invalid fields %s", request.url.path, fields)
    message = "Target, OTP, and method are required"
    if request.url.path.endswith("/send"):
        message = "Target and method are required"
    return JSONResponse(status_code=400, content={"success": False, "message": message})


@app.get("/health")
async def health_check():
    """Simple liveness probe."""
    return {"status": "healthy", "app": settings.app_name}
