from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from credservice.base_microservice import BaseMicroservice, create_store_engine
from credservice.config import Settings, load_settings
from credservice.auth.credentials import CredentialService
from credservice.auth.errors import CredentialError, InternalError, ValidationError
from credservice.auth.hashing import SecretCodec
from credservice.auth.jwt import SessionTokenIssuer
from credservice.auth.router import router as auth_router
from credservice.auth.store import CredentialStore
from credservice.notifications.dispatcher import NotificationDispatcher

# Create shared base microservice instance
base_service = BaseMicroservice(service_name="main")


def build_credential_service(
    settings: Settings,
    store: CredentialStore,
    dispatcher,
) -> CredentialService:
    """Wire the credential flows from settings and their collaborators."""
    return CredentialService(
        store=store,
        dispatcher=dispatcher,
        codec=SecretCodec(rounds=settings.bcrypt_rounds),
        issuer=SessionTokenIssuer(
            secret_key=settings.jwt_secret_key,
            issuer=settings.jwt_issuer,
            expiration=timedelta(hours=settings.jwt_expiration_hours),
        ),
        challenge_ttl=timedelta(minutes=settings.otp_expire_minutes),
        reset_ttl=timedelta(minutes=settings.reset_token_expire_minutes),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI.
    Builds the store and dispatcher unless a service was injected, and
    releases whatever it built on shutdown.
    """
    engine = None
    dispatcher = None
    if app.state.credential_service is None:
        settings = app.state.settings or load_settings()
        engine = create_store_engine(settings.database_url)
        store = CredentialStore(engine, timeout=settings.request_timeout_seconds)
        await store.create_schema()

        dispatcher = NotificationDispatcher(
            settings.amqp_url,
            settings.queue_name,
            timeout=settings.request_timeout_seconds,
        )
        await dispatcher.start()
        app.state.credential_service = build_credential_service(settings, store, dispatcher)

    base_service.log_event("service.startup", {"service": "main"})
    try:
        yield
    finally:
        base_service.log_event("service.shutdown", {"service": "main"})
        if dispatcher is not None:
            await dispatcher.close()
        if engine is not None:
            await engine.dispose()
            app.state.credential_service = None


def _validation_details(exc: RequestValidationError) -> Dict[str, str]:
    details: Dict[str, str] = {}
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part != "body"]
        details[".".join(loc) or "body"] = error.get("msg", "invalid value")
    return details


def create_app(
    settings: Optional[Settings] = None,
    credential_service: Optional[CredentialService] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Configuration; loaded from the environment at startup if omitted
        credential_service: Pre-built service (tests); skips store/broker setup
    """
    app = FastAPI(
        title="CredService API",
        description="Credential lifecycle and notification dispatch service",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.credential_service = credential_service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, replace with specific origins
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CredentialError)
    async def credential_error_handler(request: Request, exc: CredentialError):
        if exc.status_code >= 500:
            base_service.log_error(exc, context=f"{request.method} {request.url.path}")
        return base_service.error_envelope(exc.status_code, exc.code, exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        error = ValidationError(details=_validation_details(exc))
        return base_service.error_envelope(error.status_code, error.code, error.message, error.details)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        base_service.log_error(exc, context=f"{request.method} {request.url.path}")
        error = InternalError()
        return base_service.error_envelope(error.status_code, error.code, error.message)

    app.include_router(auth_router, prefix="/auth", tags=["auth"])

    @app.get("/", tags=["root"])
    async def root():
        """Root endpoint returning API information."""
        return base_service.envelope(
            data={"name": "CredService API", "version": "0.1.0", "services": ["auth"]},
            message="CredService API",
        )

    @app.get("/health", tags=["health"])
    async def health_check(request: Request):
        """Store and broker health."""
        service: Optional[CredentialService] = request.app.state.credential_service
        store_ok = service is not None and await service.store.ping()
        broker_ok = service is not None and getattr(service.dispatcher, "is_connected", False)
        return base_service.envelope(
            data={
                "store": "online" if store_ok else "offline",
                "broker": "online" if broker_ok else "offline",
            },
            message="System health",
        )

    return app


app = create_app()

# For running directly with uvicorn
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("credservice.main:app", host="0.0.0.0", port=8000, reload=True)
