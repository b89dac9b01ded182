"""
Shipping Rates Service
FastAPI application entry point

- Cart rate quoting with warehouse selection
- LTL freight quotes with static fallback pricing
- Malformed requests return 400 {"success": false, "error": ...}
"""
import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from shipping_rates import __version__
from shipping_rates.api.routes import shipping
from shipping_rates.core.config import settings
from shipping_rates.core.exceptions import ShippingRatesError, ShippingValidationError

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

logger = logging.getLogger(__name__)


def _validation_message(exc: RequestValidationError) -> str:
    """First schema error as a readable sentence."""
    errors = exc.errors()
    if not errors:
        return "Invalid request"

    first = errors[0]
    message = str(first.get("msg", "Invalid request"))
    if message.startswith("Value error, "):
        return message[len("Value error, "):]

    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query")]
    if first.get("type") == "missing" and location:
        return f"Missing required field: {'.'.join(location)}"
    if location:
        return f"{'.'.join(location)}: {message}"
    return message


app = FastAPI(
    title=settings.APP_NAME,
    description="Cart shipping rate orchestration",
    version=__version__,
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    message = _validation_message(exc)
    logger.info(f"Rejected {request.method} {request.url.path}: {message}")
    return JSONResponse(status_code=400, content={"success": False, "error": message})


@app.exception_handler(ShippingValidationError)
async def shipping_validation_handler(request: Request, exc: ShippingValidationError):
    logger.info(f"Rejected {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=400, content={"success": False, "error": exc.message})


@app.exception_handler(ShippingRatesError)
async def shipping_error_handler(request: Request, exc: ShippingRatesError):
    logger.error(f"Unhandled shipping error on {request.url.path}: {exc.to_dict()}")
    return JSONResponse(status_code=500, content={"success": False, "error": exc.message})


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(shipping.router, prefix="/api", tags=["Shipping"])


@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness plus which rate providers have credentials."""
    return {
        "status": "healthy",
        "version": __version__,
        "environment": settings.ENVIRONMENT,
        "providers": {
            "easypost": bool(settings.easypost_api_key),
            "uship": bool(settings.USHIP_API_KEY),
            "ltl_fallback_table": True,
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
