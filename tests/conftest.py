"""
Pytest fixtures for the CRM lifecycle test suite.

Provides:
- An in-memory SQLite database by default (``DATABASE_URL`` overrides it,
  e.g. a PostgreSQL URL for the ``postgres``-marked concurrency tests)
- Per-test isolation by rolling back an outer transaction
- Deterministic clock, acting users and document factories

Environment Variables:
- DATABASE_URL: database URL.  Defaults to ``sqlite+pysqlite:///:memory:``.
"""

import json
import logging
import os
from datetime import UTC, datetime
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session, sessionmaker

from crm_kernel.db.engine import (
    create_tables,
    drop_tables,
    init_engine_from_url,
    is_postgres,
    reset_engine,
)
from crm_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from crm_kernel.domain.actors import ActingUser
from crm_kernel.domain.clock import DeterministicClock
from crm_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from crm_modules.quotes.models import LineItemInput
from crm_modules.signatures.models import SignaturePayload

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///:memory:"

# PNG file signature; enough for the data-URL checks.
SIGNATURE_PNG = "data:image/png;base64,iVBORw0KGgo="


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture crm logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            ...
            assert any(r["message"] == "contract_created" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("crm")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures (engine + tables once per session)
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    eng = init_engine_from_url(get_database_url(), echo=False)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    drop_tables()
    create_tables(install_listeners=False)
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables()


@pytest.fixture
def connection(db_engine, db_tables):
    """A connection holding an outer transaction that is rolled back after the test."""
    conn = db_engine.connect()
    trans = conn.begin()
    yield conn
    try:
        trans.rollback()
    finally:
        conn.close()


@pytest.fixture
def session_factory(connection) -> sessionmaker[Session]:
    """
    Sessions that join the test's outer transaction.

    ``session.commit()`` inside code under test releases a savepoint; the
    outer rollback still undoes everything.
    """
    return sessionmaker(
        bind=connection,
        join_transaction_mode="create_savepoint",
        expire_on_commit=False,
    )


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    sess = session_factory()
    yield sess
    sess.close()


@pytest.fixture
def require_postgres(db_engine):
    if not is_postgres():
        pytest.skip("requires PostgreSQL row locking")


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock(datetime(2025, 3, 3, 9, 0, 0, tzinfo=UTC))


@pytest.fixture
def company_id() -> UUID:
    return uuid4()


@pytest.fixture
def lead_id() -> UUID:
    return uuid4()


@pytest.fixture
def sales_user(company_id) -> ActingUser:
    return ActingUser(
        user_id=uuid4(),
        company_id=company_id,
        full_name="Morgan Reyes",
        email="morgan@summitroofing.test",
    )


@pytest.fixture
def other_company_user() -> ActingUser:
    return ActingUser(user_id=uuid4(), company_id=uuid4(), full_name="Outsider")


@pytest.fixture
def customer_payload() -> SignaturePayload:
    return SignaturePayload(
        signer_name="Jane Homeowner",
        signature_data=SIGNATURE_PNG,
        signer_email="jane@example.com",
        ip_address="203.0.113.7",
        user_agent="pytest",
    )


@pytest.fixture
def company_payload() -> SignaturePayload:
    return SignaturePayload(
        signer_name="Morgan Reyes",
        signature_data=SIGNATURE_PNG,
        signer_title="Sales Manager",
    )


@pytest.fixture
def roof_line_items() -> list[LineItemInput]:
    """Subtotal 1,000.00."""
    return [
        LineItemInput("Architectural shingles", Decimal("20"), Decimal("40.00"), unit="sq"),
        LineItemInput("Tear-off and disposal", Decimal("1"), Decimal("200.00")),
    ]


@pytest.fixture
def lifecycle(session, deterministic_clock):
    """All lifecycle services wired together, with commission hooks."""
    from crm_services.lifecycle_orchestrator import LifecycleOrchestrator

    return LifecycleOrchestrator(session, clock=deterministic_clock)


@pytest.fixture
def create_quote(lifecycle, sales_user, lead_id, roof_line_items):
    """Factory: a quote for the test lead, 1,000.00 + 8% tax by default."""

    def _create(
        line_items=None,
        tax_rate=Decimal("0.08"),
        discount_amount=Decimal("0"),
        lead=None,
        send=True,
    ):
        quote = lifecycle.quotes.create_quote(
            company_id=sales_user.company_id,
            lead_id=lead or lead_id,
            title="Roof replacement",
            line_items=line_items or roof_line_items,
            actor_id=sales_user.user_id,
            tax_rate=tax_rate,
            discount_amount=discount_amount,
        )
        if send:
            lifecycle.signing.generate_share_link(quote.id, sales_user)
            quote = lifecycle.quotes.mark_sent(quote.id, sales_user.user_id, sales_user.company_id)
        return quote

    return _create


@pytest.fixture
def signed_quote(lifecycle, create_quote, sales_user, customer_payload, company_payload):
    """Factory: a fully signed quote; returns (quote, contract_id)."""

    def _sign(**kwargs):
        quote = create_quote(**kwargs)
        lifecycle.signing.sign_customer(quote.id, customer_payload)
        result = lifecycle.signing.sign_company(quote.id, company_payload, sales_user)
        return result.quote, result.contract_id

    return _sign


@pytest.fixture
def approved_change_order(lifecycle, sales_user, customer_payload, company_payload):
    """Factory: propose and dual-sign a change order on ``quote``."""

    from crm_modules.signatures.models import SignatureRole

    def _approve(quote, line_items=None, tax_rate=None):
        co = lifecycle.change_orders.propose(
            sales_user,
            lead_id=quote.lead_id,
            quote_id=quote.id,
            title="Replace rotted decking",
            line_items=line_items
            or [LineItemInput("OSB decking sheets", Decimal("10"), Decimal("20.00"))],
            tax_rate=tax_rate,
        )
        co = lifecycle.change_orders.mark_sent(co.id, sales_user)
        lifecycle.change_orders.sign_by_token(co.share_token, customer_payload)
        return lifecycle.change_orders.sign(
            co.id, SignatureRole.COMPANY_REP, company_payload, sales_user
        )

    return _approve
