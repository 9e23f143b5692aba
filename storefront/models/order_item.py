"""Order Item model."""
from decimal import Decimal

from sqlalchemy import Column, BigInteger, Integer, String, Numeric, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from storefront.database import Base, BigIntPK


class OrderItem(Base):
    """Order Item - snapshot of one purchased product. Never mutated after creation."""
    
    __tablename__ = 'order_item'
    
    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    order_id = Column(BigInteger, ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True)
    # Back-navigation only; pricing comes from the copied columns below
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False, index=True)
    product_name = Column(String(255), nullable=False)
    product_sku = Column(String(50), nullable=True)
    product_image = Column(String(500), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=Decimal('0.00'))
    subtotal = Column(Numeric(10, 2), nullable=False)
    
    __table_args__ = (
        CheckConstraint('quantity >= 1', name='check_order_item_quantity_positive'),
    )
    
    # Relationships
    order = relationship('Order', back_populates='items')
    product = relationship('Product')
    
    def calculate_subtotal(self):
        return self.unit_price * self.quantity - (self.discount_amount or Decimal('0'))
    
    def __repr__(self):
        return f"<OrderItem(id={self.id}, product_id={self.product_id}, quantity={self.quantity})>"
