"""WebUntis protocol client and endpoint adapters."""

from schoolfeed.sis.client import SessionScope, SisClient, SisSession, is_token_valid

__all__ = [
    "SisClient",
    "SisSession",
    "SessionScope",
    "is_token_valid",
]
