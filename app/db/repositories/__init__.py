"""
Supabase Postgres Repository Package.

Repository Structure:
- BaseRepository: Connection management and query helpers
- OrderRepository: Orders, order items, logs and status history
- ProductRepository: Products and their source images
- CartRepository: Shopping cart rows
- DropshipRepository: Provider submissions (Prodigi, Gelato)
- NotificationRepository: Customer notifications
- RetryOperationRepository: Persisted retry operations
- ProfileRepository: User profiles (admin flag)
"""

from .base import BaseRepository
from .cart_repository import CartRepository
from .dropship_repository import DropshipRepository
from .notification_repository import NotificationRepository
from .order_repository import OrderRepository
from .product_repository import ProductRepository
from .profile_repository import ProfileRepository
from .retry_repository import RetryOperationRepository

__all__ = [
    "BaseRepository",
    "CartRepository",
    "DropshipRepository",
    "NotificationRepository",
    "OrderRepository",
    "ProductRepository",
    "ProfileRepository",
    "RetryOperationRepository",
]
