"""Front API access: HTTP retry helpers, the paginated fetcher and the client."""
