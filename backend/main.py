import logging

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import sessionmaker

from zhinao_geo.api.endpoints import billing, functions, inquiries, jobs, tracking
from zhinao_geo.core.database import Base, build_engine, build_session_factory
from zhinao_geo.core.security import TokenVerifier
from zhinao_geo.core.settings import Settings
from zhinao_geo.models import (  # noqa: F401  register tables on Base.metadata
    contact_inquiry,
    credit_transaction,
    diagnosis_report,
    job,
    profile,
    scan_result,
    simulation_result,
    top_up_request,
)
from zhinao_geo.services.cache import TTLCache
from zhinao_geo.services.realtime import ChangeFeed, PgNotifyListener, install_session_hooks
from zhinao_geo.services.tracker import NotificationDeduper, invalidate_on_change
from zhinao_geo.services.webhook_gateway import HmacSignatureAuth, SharedSecretAuth, WebhookGateway

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    session_factory: sessionmaker | None = None,
    token_verifier: TokenVerifier | None = None,
    webhook_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the API. Run with ``uvicorn main:create_app --factory``."""
    settings = settings or Settings()
    app = FastAPI(title="Zhinao GEO API")

    if session_factory is None:
        engine = build_engine(settings.database_url)
        session_factory = build_session_factory(engine)
    engine = session_factory.kw["bind"]
    if settings.db_auto_create:
        Base.metadata.create_all(bind=engine)

    feed = ChangeFeed()
    install_session_hooks(session_factory, feed)

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.token_verifier = token_verifier or TokenVerifier.from_settings(settings)
    app.state.feed = feed
    app.state.cache = TTLCache()
    app.state.cache_subscriptions = invalidate_on_change(feed, app.state.cache)
    app.state.deduper = NotificationDeduper(window_s=settings.notify_dedup_window_s)
    app.state.webhook_transport = webhook_transport
    app.state.webhook_gateway = WebhookGateway(
        base_url=settings.n8n_webhook_base,
        auth=SharedSecretAuth(settings.n8n_webhook_secret),
        timeout_s=settings.webhook_timeout_s,
        transport=webhook_transport,
    )
    app.state.signed_webhook_gateway = WebhookGateway(
        base_url=settings.n8n_webhook_base,
        auth=HmacSignatureAuth(settings.n8n_webhook_secret),
        timeout_s=settings.webhook_timeout_s,
        transport=webhook_transport,
    )
    app.state.pg_listener = None

    origins = settings.resolved_cors_origins()
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=origins != ["*"],
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.on_event("startup")
    def startup() -> None:
        if settings.realtime_pg_listen and engine.dialect.name == "postgresql":
            listener = PgNotifyListener(engine, feed)
            listener.start()
            app.state.pg_listener = listener
        logger.info("app.startup environment=%s", settings.environment)

    @app.on_event("shutdown")
    def shutdown() -> None:
        listener = app.state.pg_listener
        if listener is not None:
            listener.stop()
            app.state.pg_listener = None

    app.include_router(functions.router, prefix="/functions/v1", tags=["functions"])
    app.include_router(jobs.router, prefix="/api", tags=["jobs"])
    app.include_router(billing.router, prefix="/api", tags=["billing"])
    app.include_router(inquiries.router, prefix="/api", tags=["inquiries"])
    app.include_router(tracking.router, prefix="/api", tags=["tracking"])

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    return app
