"""Cart Item model - one line of a user's persistent cart."""
from sqlalchemy import (
    Column, BigInteger, Integer, Numeric, DateTime, ForeignKey, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK


class CartItem(Base):
    """
    Cart Item - (user, product) pair with a quantity and a price snapshot.
    
    ``price_at_addition`` is refreshed on every add/update so the cart total
    only follows live price changes when the line is touched again.
    """
    
    __tablename__ = 'cart_item'
    
    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey('app_user.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False, index=True)
    quantity = Column(Integer, nullable=False, default=1)
    price_at_addition = Column(Numeric(10, 2), nullable=False)
    added_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())
    
    __table_args__ = (
        UniqueConstraint('user_id', 'product_id', name='uq_cart_item_user_product'),
        CheckConstraint('quantity >= 1', name='check_cart_item_quantity_positive'),
    )
    
    # Relationships
    user = relationship('AppUser', back_populates='cart_items')
    product = relationship('Product')
    
    @property
    def subtotal(self):
        return self.price_at_addition * self.quantity
    
    @property
    def is_available(self):
        return self.product is not None and self.product.active and self.product.stock >= self.quantity
    
    @property
    def has_stock_issue(self):
        return not self.is_available
    
    def __repr__(self):
        return f"<CartItem(id={self.id}, product_id={self.product_id}, quantity={self.quantity})>"
