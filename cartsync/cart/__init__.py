"""Cart package: models, store access, reconciliation, mutations and views."""
from .models import Cart, CartLineItem, CartSnapshot, PendingKind, PendingOperation
from .repository import CartRepository
from .reconciler import CartReconciler, CartUpdate, SyncStatus
from .coordinator import CartMutationCoordinator
from .view_model import CartLineView, CartView, CartViewModel, derive_view
from .engine import CartSyncEngine

__all__ = [
    "Cart",
    "CartLineItem",
    "CartSnapshot",
    "PendingKind",
    "PendingOperation",
    "CartRepository",
    "CartReconciler",
    "CartUpdate",
    "SyncStatus",
    "CartMutationCoordinator",
    "CartLineView",
    "CartView",
    "CartViewModel",
    "derive_view",
    "CartSyncEngine",
]
