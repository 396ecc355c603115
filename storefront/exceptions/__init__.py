"""Custom exceptions for the storefront checkout and order pipeline."""
from decimal import Decimal


class StoreError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="Ocorreu um erro interno", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv


class ValidationError(StoreError):
    """Malformed input (postal code, address, quantity). Never retried automatically."""
    def __init__(self, message, payload=None):
        super().__init__(message, 400, payload)


class NotFoundError(StoreError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Recurso não encontrado", payload=None):
        super().__init__(message, 404, payload)


def _fmt_qty(value):
    value = Decimal(str(value))
    return f"{int(value)}" if value % 1 == 0 else f"{value:.2f}".rstrip('0').rstrip('.')


class InsufficientStockError(StoreError):
    """Raised when a product cannot cover the requested quantity."""
    def __init__(self, product_name, requested, available):
        self.product_name = product_name
        self.requested = requested
        self.available = available
        if Decimal(str(available)) <= 0:
            message = f'Produto "{product_name}" não está mais disponível.'
        else:
            message = (
                f'Estoque insuficiente para "{product_name}". '
                f'Restam apenas {_fmt_qty(available)} unidades.'
            )
        payload = {
            'product_name': product_name,
            'requested': _fmt_qty(requested),
            'available': _fmt_qty(available),
        }
        super().__init__(message, 409, payload)


class InvalidTransitionError(StoreError):
    """Raised when an order status change is not allowed from its current status."""
    def __init__(self, current, requested):
        self.current = current
        self.requested = requested
        message = f'Transição de status inválida: {current} → {requested}'
        super().__init__(message, 409, {'current': current, 'requested': requested})


class ShippingProviderUnavailable(StoreError):
    """Shipping rate lookup failed; callers degrade to in-store pickup."""
    def __init__(self, message="Serviço de frete indisponível"):
        super().__init__(message, 503)


class PaymentRequestFailed(StoreError):
    """Order persisted and stock reserved, but no payment preference was created."""
    def __init__(self, order_id, message=None):
        self.order_id = order_id
        message = message or (
            'Pedido criado, mas não foi possível gerar o link de pagamento. '
            'Tente novamente a partir dos seus pedidos.'
        )
        super().__init__(message, 502, {'order_id': order_id, 'partial': True})


class PersistenceFailure(StoreError):
    """Database/storage unavailable; nothing was left behind."""
    def __init__(self, message="Não foi possível salvar o pedido. Tente novamente."):
        super().__init__(message, 503)


class UnauthorizedError(StoreError):
    """Raised when a user lacks permission for an action."""
    def __init__(self, message="Acesso não autorizado"):
        super().__init__(message, 403)
