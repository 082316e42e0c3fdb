"""FastAPI route modules.

Exports all route modules for inclusion in the main application.
"""

from src.api.routes import auth, connections, conversations

__all__ = [
    "auth",
    "connections",
    "conversations",
]
