"""API package exports."""
from . import routes_admin, routes_auth, routes_conversations

__all__ = [
    "routes_admin",
    "routes_auth",
    "routes_conversations",
]
