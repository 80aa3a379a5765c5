"""
Cart sync engine

Keeps a per-user shopping cart consistent between the local UI and the
remote cart store:
- db: Upstash Redis client and key layout
- realtime: cart change stream
- cart: repository, reconciler, mutation coordinator, view model
- services: catalog client, money helpers

Note: Imports are lazy so importing the package does not require store
credentials or pull in the Redis client.
"""

__all__ = [
    "CartSyncEngine",
    "SessionContext",
    "get_redis",
]


def __getattr__(name):
    """Lazy attribute access for clean module loading."""
    if name == "CartSyncEngine":
        from cartsync.cart import CartSyncEngine
        return CartSyncEngine
    elif name == "SessionContext":
        from cartsync.session import SessionContext
        return SessionContext
    elif name == "get_redis":
        from cartsync.db import get_redis
        return get_redis
    raise AttributeError(f"module 'cartsync' has no attribute '{name}'")
