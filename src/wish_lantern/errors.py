class StoreError(Exception):
    """Any failure reported by a wish store: transport, schema or a rejected request."""


class EmptyWishError(ValueError):
    """Raised before any store call when a wish has no content after trimming."""
