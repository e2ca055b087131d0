"""
FastAPI application factory.

    app = create_app()                       # config from get_active_config()
    app = create_app(config, session_factory=factory, notifier=notifier)

Routes are synchronous; FastAPI runs them in its threadpool, one
session and one transaction per request (``LifecycleRunner``).
"""

from fastapi import FastAPI
from sqlalchemy.orm import Session, sessionmaker

from crm_api.errors import install_error_handlers
from crm_api.routes import change_orders, invoices, payments, quotes
from crm_config import get_active_config
from crm_config.schema import LifecycleConfig
from crm_kernel.db.engine import get_session_factory, init_engine_from_url
from crm_kernel.domain.clock import Clock, SystemClock
from crm_kernel.logging_config import configure_logging, get_logger
from crm_services.notifications import BestEffortDispatcher, DocumentRenderer

logger = get_logger("api.app")


def create_app(
    config: LifecycleConfig | None = None,
    *,
    session_factory: sessionmaker[Session] | None = None,
    notifier: BestEffortDispatcher | None = None,
    renderer: DocumentRenderer | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    config = config or get_active_config()
    configure_logging(level=config.log_level)

    if session_factory is None:
        init_engine_from_url(config.database_url)
        session_factory = get_session_factory()

    app = FastAPI(
        title="Roofing CRM lifecycle",
        description="Quote signing, contracts, change orders, invoices, payments and commissions",
        version="0.1.0",
    )
    app.state.config = config
    app.state.session_factory = session_factory
    app.state.clock = clock or SystemClock()
    app.state.notifier = notifier or BestEffortDispatcher(
        timeout_seconds=config.notifications.timeout_seconds,
        max_workers=config.notifications.max_workers,
    )
    app.state.renderer = renderer

    install_error_handlers(app)
    app.include_router(quotes.router)
    app.include_router(change_orders.router)
    app.include_router(invoices.router)
    app.include_router(payments.router)

    logger.info("api_app_created", extra={"route_count": len(app.routes)})
    return app
