"""Order model and status state machine."""
import enum
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, Numeric, DateTime, JSON, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class OrderStatus(str, enum.Enum):
    """Persisted order status vocabulary (exact strings used by reports/exports)."""
    WAITING_PAYMENT = 'aguardando_pagamento'
    PAID = 'pago'
    PICKING = 'em_separacao'
    SHIPPED = 'enviado'
    READY_FOR_PICKUP = 'pronto_retirada'
    DELIVERED = 'entregue'
    CANCELLED = 'cancelado'

    @property
    def label(self):
        return STATUS_LABELS[self]

    @property
    def is_terminal(self):
        return not ALLOWED_TRANSITIONS[self]

    def can_transition_to(self, target):
        return OrderStatus(target) in ALLOWED_TRANSITIONS[self]

    @classmethod
    def parse(cls, value):
        """Return the enum for a status string, or None when unrecognized."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip())
        except ValueError:
            return None


ALLOWED_TRANSITIONS = {
    OrderStatus.WAITING_PAYMENT: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.PICKING, OrderStatus.CANCELLED}),
    OrderStatus.PICKING: frozenset({OrderStatus.SHIPPED, OrderStatus.READY_FOR_PICKUP, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.READY_FOR_PICKUP: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

STATUS_LABELS = {
    OrderStatus.WAITING_PAYMENT: 'Aguardando Pagamento',
    OrderStatus.PAID: 'Pago',
    OrderStatus.PICKING: 'Em Separação',
    OrderStatus.SHIPPED: 'Enviado',
    OrderStatus.READY_FOR_PICKUP: 'Pronto para Retirada',
    OrderStatus.DELIVERED: 'Entregue',
    OrderStatus.CANCELLED: 'Cancelado',
}


class Order(Base):
    """Order (pedido) created once per successful checkout."""

    __tablename__ = 'orders'
    __table_args__ = (
        Index('ix_orders_status_created_at', 'status', 'created_at'),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    buyer_id = Column(String(64), nullable=False, index=True)
    subtotal = Column(Numeric(10, 2), nullable=False)
    shipping_cost = Column(Numeric(10, 2), nullable=False, default=0)
    shipping_method = Column(String, nullable=True)
    shipping_address = Column(JSON, nullable=True)
    total = Column(Numeric(10, 2), nullable=False)
    status = Column(String(30), nullable=False, default=OrderStatus.WAITING_PAYMENT.value)
    tracking_code = Column(String(64), nullable=True)
    tracking_url = Column(String(255), nullable=True)

    # Shipment label on Melhor Envio, moved along by its webhook
    me_order_id = Column(String(64), nullable=True, unique=True, index=True)
    shipping_status = Column(String(32), nullable=True)
    payment_method = Column(String(30), nullable=False, default='mercado_pago')

    # Set when the reservation held by this order went back to stock
    stock_released_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), onupdate=utcnow)

    # Buyers live in the user collaborator; no FK, checkout never needs a local profile row
    buyer = relationship('Buyer', primaryjoin='foreign(Order.buyer_id) == Buyer.id', viewonly=True)
    items = relationship('OrderItem', back_populates='order', cascade='all, delete-orphan', order_by='OrderItem.id')
    payments = relationship('Payment', back_populates='order', cascade='all, delete-orphan', order_by='Payment.id')

    @property
    def holds_reservation(self):
        """True while the ordered quantities are still deducted from stock on behalf of this order."""
        return self.stock_released_at is None

    @property
    def status_label(self):
        parsed = OrderStatus.parse(self.status)
        return parsed.label if parsed else self.status

    def to_dict(self):
        return {
            'id': self.id,
            'buyer_id': self.buyer_id,
            'status': self.status,
            'status_label': self.status_label,
            'subtotal': str(self.subtotal),
            'shipping_cost': str(self.shipping_cost),
            'shipping_method': self.shipping_method,
            'shipping_address': self.shipping_address,
            'total': str(self.total),
            'tracking_code': self.tracking_code,
            'tracking_url': self.tracking_url,
            'shipping_status': self.shipping_status,
            'payment_method': self.payment_method,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'items': [item.to_dict() for item in self.items],
        }

    def __repr__(self):
        return f"<Order(id={self.id}, total={self.total}, status={self.status})>"
