"""HTTP routers, one per document type."""
