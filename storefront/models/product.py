"""Product model."""
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import (
    Column, BigInteger, Integer, String, Text, Boolean, Numeric, DateTime, CheckConstraint
)
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK
from storefront.exceptions import InsufficientStockError


class Product(Base):
    """Product model.

    Stock and sold_count are shared counters mutated by concurrent order
    placements and cancellations. ``version_id`` is the optimistic lock
    column: every UPDATE is issued as ``... WHERE version_id = :old`` and a
    concurrent writer surfaces as ``StaleDataError``.
    """
    
    __tablename__ = 'product'
    
    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    sku = Column(String(50), nullable=True)
    description = Column(Text, nullable=True)
    image_url = Column(String(500), nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    discount_price = Column(Numeric(10, 2), nullable=True)
    stock = Column(Integer, nullable=False, default=0, server_default='0')
    active = Column(Boolean, nullable=False, default=True)
    sold_count = Column(Integer, nullable=False, default=0, server_default='0')
    view_count = Column(BigInteger, nullable=False, default=0, server_default='0')
    version_id = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
    
    __table_args__ = (
        CheckConstraint('stock >= 0', name='check_product_stock_non_negative'),
        CheckConstraint('sold_count >= 0', name='check_product_sold_count_non_negative'),
        CheckConstraint('price > 0', name='check_product_price_positive'),
    )
    
    __mapper_args__ = {'version_id_col': version_id}
    
    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', stock={self.stock})>"
    
    @property
    def has_discount(self):
        """A discount is active when the discount price is set and below the price."""
        return self.discount_price is not None and self.discount_price < self.price
    
    @property
    def effective_price(self):
        return self.discount_price if self.has_discount else self.price
    
    @property
    def discount_percentage(self):
        if not self.has_discount:
            return 0
        discount = (self.price - self.discount_price) * 100 / self.price
        return int(discount.quantize(Decimal('1'), rounding=ROUND_HALF_UP))
    
    @property
    def in_stock(self):
        return (self.stock or 0) > 0
    
    def decrement_stock(self, quantity):
        """Consume stock for a purchase and count it as sold."""
        if self.stock < quantity:
            raise InsufficientStockError(self.name, quantity, self.stock)
        self.stock -= quantity
        self.sold_count = (self.sold_count or 0) + quantity
    
    def restore_stock(self, quantity):
        """Exact inverse of decrement_stock()."""
        self.stock += quantity
        self.sold_count = (self.sold_count or 0) - quantity
    
    def increment_view_count(self):
        self.view_count = (self.view_count or 0) + 1
