"""HTTP surface for the quote-to-cash lifecycle."""

from crm_api.app import create_app

__all__ = ["create_app"]
