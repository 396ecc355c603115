"""Buyer profile snapshot (owned by the user collaborator, read-only here)."""
from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func
from storefront.database import Base


class Buyer(Base):
    """Buyer (cliente) as exposed to order listings and exports."""

    __tablename__ = 'buyer'

    id = Column(String(64), primary_key=True)
    name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    phone = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @property
    def display_name(self):
        return self.name or self.email or self.id

    def __repr__(self):
        return f"<Buyer(id={self.id}, email={self.email})>"
