"""
Charge Gateway HTTP API.
GET /charger/, POST /charger/start, POST /charger/stop backed by the vendor API.
Services are built in the lifespan from environment settings; a missing setting stops startup.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from charge_gateway.authenticator import Authenticator
from charge_gateway.config import Settings, load_settings
from charge_gateway.errors import (
    AuthenticationError,
    GatewayError,
    NotFoundError,
    StorageError,
    VendorError,
)
from charge_gateway.session_manager import STATE_UNAUTHENTICATED, SessionManager
from charge_gateway.token_store import TokenStore
from charge_gateway.vendor_client import VendorClient

logger = logging.getLogger(__name__)


def build_services(settings: Settings) -> tuple[SessionManager, VendorClient]:
    """Wire token store, authenticator, session manager and vendor client for one account."""
    store = TokenStore(settings.token_path)
    authenticator = Authenticator(
        store=store,
        authorize_url=settings.authorize_url,
        token_url=settings.token_url,
        redirect_uri=settings.redirect_uri,
        scope=settings.scope,
        timeout=settings.auth_timeout,
        default_token_lifetime=settings.default_token_lifetime,
    )
    sessions = SessionManager(store=store, authenticator=authenticator, credentials=settings.credentials)
    vendor = VendorClient(
        base_url=settings.api_base_url,
        charger_id=settings.charger_id,
        session_manager=sessions,
        timeout=settings.http_timeout,
    )
    return sessions, vendor


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load settings (ConfigError aborts startup) and build services; close HTTP client on shutdown."""
    settings = load_settings()
    logging.getLogger("charge_gateway").setLevel(settings.log_level)
    sessions, vendor = build_services(settings)
    app.state.settings = settings
    app.state.sessions = sessions
    app.state.vendor = vendor
    logger.info("Gateway ready for charger %s", settings.charger_id)
    try:
        yield
    finally:
        await vendor.aclose()


app = FastAPI(title="Charge Gateway", version="0.1.0", lifespan=lifespan)


def get_vendor(request: Request) -> VendorClient:
    return request.app.state.vendor


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _error_response(status_code: int, exc: GatewayError, **extra) -> JSONResponse:
    body = {"error": exc.error_code, "error_description": str(exc)}
    body.update(extra)
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return _error_response(404, exc)


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError):
    logger.error("Vendor login failed (%s): %s", exc.kind, exc)
    return _error_response(500, exc, kind=exc.kind)


@app.exception_handler(VendorError)
async def vendor_error_handler(request: Request, exc: VendorError):
    logger.error("Vendor API error %s on %s", exc.status_code, request.url.path)
    return _error_response(500, exc, vendor_status=exc.status_code)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    return _error_response(500, exc)


@app.get("/health")
def health(request: Request):
    """Health check endpoint. Reports whether a valid vendor token is held."""
    sessions = getattr(request.app.state, "sessions", None)
    auth_state = sessions.state if sessions is not None else STATE_UNAUTHENTICATED
    return {"status": "ok", "service": "charge_gateway", "auth": auth_state}


@app.get("/charger/")
async def charger_status(
    vendor: VendorClient = Depends(get_vendor),
    settings: Settings = Depends(get_settings),
):
    """Status of the configured charger and its EVSEs, as reported by the vendor."""
    return await vendor.get_charger_status(settings.charger_id)


@app.post("/charger/start")
async def charger_start(
    vendor: VendorClient = Depends(get_vendor),
    settings: Settings = Depends(get_settings),
):
    """Start a charging session on the configured EVSE."""
    return await vendor.start_session(settings.evse_id)


@app.post("/charger/stop")
async def charger_stop(vendor: VendorClient = Depends(get_vendor)):
    """Stop the active session on the configured charger; 404 if there is none."""
    return await vendor.stop_session()


if __name__ == "__main__":
    import os

    import uvicorn

    logging.basicConfig(
        level=os.environ.get("CHARGER_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "charge_gateway.main:app",
        host=os.environ.get("CHARGER_GATEWAY_HOST", "127.0.0.1"),
        port=int(os.environ.get("CHARGER_GATEWAY_PORT", "8080")),
    )
