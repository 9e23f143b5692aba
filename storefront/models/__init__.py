"""Models package - exports all SQLAlchemy models."""
from storefront.models.app_user import AppUser, UserRole
from storefront.models.product import Product
from storefront.models.cart_item import CartItem
from storefront.models.order import (
    Order, OrderStatus, PaymentStatus, PaymentMethod,
    CANCELLABLE_STATUSES, TERMINAL_STATUSES
)
from storefront.models.order_item import OrderItem
from storefront.models.payment import Payment

__all__ = [
    'AppUser', 'UserRole',
    'Product', 'CartItem',
    'Order', 'OrderStatus', 'PaymentStatus', 'PaymentMethod',
    'CANCELLABLE_STATUSES', 'TERMINAL_STATUSES',
    'OrderItem', 'Payment',
]
