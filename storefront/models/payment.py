"""Payment model (Mercado Pago preferences and notifications)."""
import enum
from sqlalchemy import Column, String, Integer, Numeric, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, BigIntegerType
from storefront.models.order import utcnow


class PaymentStatus(str, enum.Enum):
    """Payment status as reported by Mercado Pago."""
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    REFUNDED = 'refunded'
    CANCELLED = 'cancelled'
    IN_PROCESS = 'in_process'
    CHARGED_BACK = 'charged_back'


class Payment(Base):
    """Payment request / notification attached to an order."""

    __tablename__ = 'payment'

    id = Column(BigIntegerType, primary_key=True, autoincrement=True)
    order_id = Column(String(36), ForeignKey('orders.id'), nullable=False, index=True)
    preference_id = Column(String(64), nullable=True)
    checkout_url = Column(String, nullable=True)
    status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)

    # Filled from webhook notifications
    external_id = Column(String(64), unique=True, nullable=True)
    status_detail = Column(String(64), nullable=True)
    payment_type = Column(String(32), nullable=True)
    amount = Column(Numeric(10, 2), nullable=True)
    payer_email = Column(String, nullable=True)
    installments = Column(Integer, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    raw_webhook = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    order = relationship('Order', back_populates='payments')

    def __repr__(self):
        return f"<Payment(id={self.id}, order_id={self.order_id}, status={self.status})>"
