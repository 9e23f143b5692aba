"""Payment model - one payment attempt against an order."""
from decimal import Decimal

from sqlalchemy import (
    Column, BigInteger, String, Numeric, DateTime, Enum, ForeignKey, CheckConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK
from storefront.models.order import PaymentStatus, PaymentMethod


class Payment(Base):
    """
    Payment - an attempt to pay an order.
    
    An order can collect several attempts (a failed card, then a retry).
    The order's own payment_status mirrors the latest outcome; the amount
    is copied from the order total when the attempt is created.
    """
    
    __tablename__ = 'payment'
    
    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    order_id = Column(BigInteger, ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id = Column(BigInteger, ForeignKey('app_user.id'), nullable=False, index=True)
    
    transaction_id = Column(String(255), nullable=False, unique=True, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default='USD')
    status = Column(Enum(PaymentStatus, name='payment_record_status'), nullable=False, default=PaymentStatus.PENDING)
    method = Column(Enum(PaymentMethod, name='payment_record_method'), nullable=True)
    
    # Reported by the processor on confirmation
    card_last4 = Column(String(4), nullable=True)
    card_brand = Column(String(30), nullable=True)
    receipt_url = Column(String(500), nullable=True)
    failure_message = Column(String(500), nullable=True)
    refund_amount = Column(Numeric(10, 2), nullable=False, default=Decimal('0.00'))
    
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)
    
    __table_args__ = (
        CheckConstraint('amount >= 0', name='check_payment_amount_non_negative'),
        CheckConstraint('refund_amount >= 0', name='check_payment_refund_non_negative'),
        CheckConstraint('refund_amount <= amount', name='check_payment_refund_within_amount'),
    )
    
    # Relationships
    order = relationship('Order', back_populates='payments')
    user = relationship('AppUser')
    
    @property
    def refunded(self):
        return self.status == PaymentStatus.REFUNDED
    
    def __repr__(self):
        return f"<Payment(id={self.id}, order_id={self.order_id}, status={self.status}, amount={self.amount})>"
