"""Order model - aggregate root for a purchase and its immutable lines."""
import enum
from decimal import Decimal

from sqlalchemy import (
    Column, BigInteger, String, Numeric, DateTime, Enum, ForeignKey, CheckConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK


class OrderStatus(str, enum.Enum):
    """Order lifecycle status."""
    PENDING = 'PENDING'
    CONFIRMED = 'CONFIRMED'
    PROCESSING = 'PROCESSING'
    SHIPPED = 'SHIPPED'
    DELIVERED = 'DELIVERED'
    CANCELLED = 'CANCELLED'
    REFUNDED = 'REFUNDED'


class PaymentStatus(str, enum.Enum):
    """Payment status reported by the payment subsystem or an admin."""
    PENDING = 'PENDING'
    PAID = 'PAID'
    FAILED = 'FAILED'
    REFUNDED = 'REFUNDED'


class PaymentMethod(str, enum.Enum):
    """Payment method chosen at checkout."""
    CREDIT_CARD = 'CREDIT_CARD'
    DEBIT_CARD = 'DEBIT_CARD'
    PAYPAL = 'PAYPAL'
    STRIPE = 'STRIPE'
    CASH_ON_DELIVERY = 'CASH_ON_DELIVERY'


CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})
TERMINAL_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.REFUNDED})


class Order(Base):
    """
    Order header.
    
    The shipping address is a copied snapshot, not a foreign key, so later
    edits to a user's details never alter historical orders. Only status,
    payment, tracking and cancellation fields change after creation.
    """
    
    __tablename__ = 'orders'
    
    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    order_number = Column(String(40), nullable=False, unique=True, index=True)
    user_id = Column(BigInteger, ForeignKey('app_user.id'), nullable=False, index=True)
    
    status = Column(Enum(OrderStatus, name='order_status'), nullable=False, default=OrderStatus.PENDING, index=True)
    payment_status = Column(Enum(PaymentStatus, name='payment_status'), nullable=False, default=PaymentStatus.PENDING)
    payment_method = Column(Enum(PaymentMethod, name='payment_method'), nullable=True)
    payment_transaction_id = Column(String(255), nullable=True)
    
    # Amounts
    subtotal = Column(Numeric(10, 2), nullable=False)
    discount = Column(Numeric(10, 2), nullable=False, default=Decimal('0.00'))
    tax = Column(Numeric(10, 2), nullable=False, default=Decimal('0.00'))
    shipping_cost = Column(Numeric(10, 2), nullable=False, default=Decimal('0.00'))
    total_amount = Column(Numeric(10, 2), nullable=False)
    
    # Shipping address snapshot
    shipping_name = Column(String(100), nullable=False)
    shipping_email = Column(String(255), nullable=False)
    shipping_phone = Column(String(20), nullable=False)
    shipping_address_line1 = Column(String(255), nullable=False)
    shipping_address_line2 = Column(String(255), nullable=True)
    shipping_city = Column(String(100), nullable=False)
    shipping_state = Column(String(100), nullable=True)
    shipping_postal_code = Column(String(20), nullable=False)
    shipping_country = Column(String(100), nullable=False)
    
    order_notes = Column(String(1000), nullable=True)
    tracking_number = Column(String(255), nullable=True)
    cancellation_reason = Column(String(500), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
    
    __table_args__ = (
        CheckConstraint('subtotal >= 0', name='check_order_subtotal_non_negative'),
        CheckConstraint('discount >= 0', name='check_order_discount_non_negative'),
        CheckConstraint('tax >= 0', name='check_order_tax_non_negative'),
        CheckConstraint('shipping_cost >= 0', name='check_order_shipping_non_negative'),
        CheckConstraint('total_amount >= 0', name='check_order_total_non_negative'),
    )
    
    # Relationships
    user = relationship('AppUser', back_populates='orders')
    items = relationship(
        'OrderItem',
        back_populates='order',
        cascade='all, delete-orphan',
        order_by='OrderItem.id'
    )
    payments = relationship(
        'Payment',
        back_populates='order',
        cascade='all, delete-orphan',
        order_by='Payment.id'
    )
    
    def can_be_cancelled(self):
        return self.status in CANCELLABLE_STATUSES
    
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES
    
    @property
    def gross_subtotal(self):
        """Lines valued at regular (undiscounted) prices.

        ``subtotal`` is already net of product discounts, so
        ``total_amount == gross_subtotal - discount + tax + shipping_cost``.
        """
        return (self.subtotal or Decimal('0')) + (self.discount or Decimal('0'))
    
    def expected_total(self):
        """Recompute the total from the stored lines and charges."""
        lines_total = sum((item.subtotal for item in self.items), Decimal('0.00'))
        return lines_total + self.tax + self.shipping_cost
    
    def __repr__(self):
        return f"<Order(id={self.id}, number='{self.order_number}', status={self.status})>"
