"""
OAuth Token Management
"""
from mirrorsync.services.tokens.broker import TokenBroker
from mirrorsync.services.tokens.google_oauth import GoogleOAuthClient

__all__ = [
    "TokenBroker",
    "GoogleOAuthClient",
]
