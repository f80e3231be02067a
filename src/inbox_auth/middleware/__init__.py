"""
Inbox authentication middleware for ASGI and WSGI frameworks.

Re-exports middleware classes for convenient imports:
    from inbox_auth.middleware import InboxAuthASGIMiddleware
    from inbox_auth.middleware import InboxAuthWSGIMiddleware
"""

from .wsgi import InboxAuthWSGIMiddleware

__all__: list[str] = ["InboxAuthWSGIMiddleware"]

# ASGI middleware (FastAPI, Starlette)
try:
    from .asgi import InboxAuthASGIMiddleware
    __all__.append("InboxAuthASGIMiddleware")
except ImportError:
    pass
