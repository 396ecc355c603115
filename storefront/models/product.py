"""Product model (catalog snapshot consumed by checkout)."""
from decimal import Decimal
from sqlalchemy import Column, String, Boolean, Numeric, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, BigIntegerType


class Product(Base):
    """Product as published by the catalog collaborator."""

    __tablename__ = 'product'

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    sku = Column(String, nullable=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    price = Column(Numeric(10, 2), nullable=False)

    # Wholesale rule: line subtotal >= min amount gives discount percent off the unit price
    wholesale_min_amount = Column(Numeric(10, 2), nullable=True)
    wholesale_discount_percent = Column(Numeric(5, 2), nullable=True)

    # Shipping volume (kg / cm)
    weight = Column(Numeric(8, 3), nullable=False, default=Decimal('0.3'))
    width = Column(Numeric(8, 2), nullable=False, default=Decimal('11'))
    height = Column(Numeric(8, 2), nullable=False, default=Decimal('2'))
    length = Column(Numeric(8, 2), nullable=False, default=Decimal('16'))

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    stock = relationship('ProductStock', uselist=False, back_populates='product', cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', price={self.price})>"

    @property
    def stock_qty(self):
        """Current on-hand quantity (0 when no stock row exists)."""
        if self.stock:
            return self.stock.quantity
        return 0
