"""
Tests for ShareLinkService.

Validates:
- A new token expires ttl_days after issue
- An unexpired token is reused, an expired one replaced
- resolve() tells an unknown token from an expired one
"""

from datetime import timedelta

import pytest

from crm_kernel.exceptions import LinkExpiredError, ShareTokenNotFoundError
from crm_kernel.services.share_link_service import ShareLinkService
from crm_modules.quotes.orm import QuoteModel


@pytest.fixture
def quote_row(session, create_quote):
    quote = create_quote(send=False)
    return session.get(QuoteModel, quote.id)


@pytest.fixture
def share_links(session, deterministic_clock):
    return ShareLinkService(session, deterministic_clock, ttl_days=30)


class TestEnsure:

    def test_issues_token_with_expiry(self, share_links, quote_row, deterministic_clock):
        link = share_links.ensure(quote_row, "quote")

        assert link.reused is False
        assert len(link.token) >= 32
        assert link.expires_at == deterministic_clock.now() + timedelta(days=30)
        assert quote_row.share_token == link.token

    def test_reuses_unexpired_token(self, share_links, quote_row, deterministic_clock):
        first = share_links.ensure(quote_row, "quote")
        deterministic_clock.advance_days(29)

        second = share_links.ensure(quote_row, "quote")

        assert second.reused is True
        assert second.token == first.token
        assert second.expires_at == first.expires_at

    def test_replaces_expired_token(self, share_links, quote_row, deterministic_clock):
        first = share_links.ensure(quote_row, "quote")
        deterministic_clock.advance_days(31)

        second = share_links.ensure(quote_row, "quote")

        assert second.reused is False
        assert second.token != first.token
        assert second.expires_at == deterministic_clock.now() + timedelta(days=30)


class TestResolve:

    def test_resolves_live_token(self, share_links, quote_row):
        link = share_links.ensure(quote_row, "quote")
        assert share_links.resolve(QuoteModel, link.token, "quote").id == quote_row.id

    @pytest.mark.parametrize("token", ["", "no-such-token"])
    def test_unknown_token(self, share_links, token):
        with pytest.raises(ShareTokenNotFoundError):
            share_links.resolve(QuoteModel, token, "quote")

    def test_expired_token(self, share_links, quote_row, deterministic_clock):
        link = share_links.ensure(quote_row, "quote")
        deterministic_clock.advance_days(45)

        with pytest.raises(LinkExpiredError) as exc_info:
            share_links.resolve(QuoteModel, link.token, "quote")
        assert exc_info.value.document_type == "quote"
        assert str(exc_info.value) == "This link has expired"
