"""
Mercado Pago Service for checkout payments.
Creates hosted-checkout preferences for orders and reads payments notified by webhook.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Any, List, Optional

import mercadopago  # type: ignore
from mercadopago.config import RequestOptions  # type: ignore

from storefront.exceptions import PaymentRequestFailed
from storefront.models import PaymentStatus

logger = logging.getLogger(__name__)

CURRENCY_ID = 'BRL'


@dataclass(frozen=True)
class PaymentHandoff:
    """What the buyer needs to finish paying on the provider's page."""
    preference_id: Optional[str]
    redirect_url: str


def map_payment_status(status: Optional[str]) -> PaymentStatus:
    """Normalize a provider status; anything unknown counts as pending."""
    try:
        return PaymentStatus(status)
    except ValueError:
        return PaymentStatus.PENDING


def build_preference_items(order) -> List[Dict[str, Any]]:
    """Order items in Mercado Pago format, plus shipping as its own item when charged."""
    items = []
    for item in order.items:
        items.append({
            'id': str(item.product_id) if item.product_id is not None else None,
            'title': item.product_name,
            'description': item.product_name[:256],
            'category_id': 'others',
            'quantity': int(item.quantity),
            'unit_price': float(item.unit_price),
            'currency_id': CURRENCY_ID,
        })

    if order.shipping_cost and order.shipping_cost > 0:
        items.append({
            'id': 'shipping',
            'title': f"Frete - {order.shipping_method}",
            'description': f"Frete - {order.shipping_method}",
            'category_id': 'others',
            'quantity': 1,
            'unit_price': float(order.shipping_cost),
            'currency_id': CURRENCY_ID,
        })
    return items


class MercadoPagoService:
    """Service to interact with Mercado Pago API."""

    def __init__(
        self,
        access_token: Optional[str],
        back_url_base: str,
        notification_url: Optional[str] = None,
        statement_descriptor: str = 'LOJA',
        sandbox: bool = True,
        timeout: float = 10.0,
    ):
        """Initialize SDK with access token."""
        self.token = access_token
        self.back_url_base = (back_url_base or '').rstrip('/')
        self.notification_url = notification_url
        self.statement_descriptor = statement_descriptor
        self.sandbox = sandbox
        self.request_options = RequestOptions(connection_timeout=timeout, max_retries=1)
        if not self.token:
            logger.warning("Mercado Pago ACCESS_TOKEN not found in config.")
            self.sdk = None
        else:
            self.sdk = mercadopago.SDK(self.token, request_options=self.request_options)

    @classmethod
    def from_config(cls, config) -> 'MercadoPagoService':
        webhook_base = (config.get('WEBHOOK_BASE_URL') or '').rstrip('/')
        return cls(
            access_token=config.get('MP_ACCESS_TOKEN'),
            back_url_base=config.get('BACK_URL_BASE', ''),
            notification_url=f"{webhook_base}/webhooks/mercadopago" if webhook_base else None,
            statement_descriptor=config.get('MP_STATEMENT_DESCRIPTOR', 'LOJA'),
            sandbox=config.get('MP_SANDBOX', True),
            timeout=config.get('PAYMENT_TIMEOUT_SECONDS', 10.0),
        )

    def _check_sdk(self):
        """Raise error if SDK is not initialized."""
        if not self.sdk:
            raise ValueError("Mercado Pago SDK not initialized. Missing MP_ACCESS_TOKEN.")

    def create_preference(self, order, payer: Optional[Dict[str, Any]] = None) -> PaymentHandoff:
        """
        Create a Checkout Pro preference for the order.

        Args:
            order: persisted Order (with items) - its id is the external_reference.
            payer: optional payer data ({'email': ..., 'name': ...}).

        Returns:
            PaymentHandoff with preference id and redirect URL.

        Raises:
            PaymentRequestFailed: SDK missing, timeout, non-201 answer or no checkout URL.
        """
        preference_data = {
            'items': build_preference_items(order),
            'external_reference': order.id,
            'statement_descriptor': self.statement_descriptor,
            'back_urls': {
                'success': f"{self.back_url_base}/pagamento/sucesso",
                'failure': f"{self.back_url_base}/pagamento/falha",
                'pending': f"{self.back_url_base}/pagamento/pendente",
            },
            'auto_return': 'approved',
        }
        if payer:
            preference_data['payer'] = payer
        if self.notification_url:
            preference_data['notification_url'] = self.notification_url

        try:
            self._check_sdk()
            response = self.sdk.preference().create(preference_data, self.request_options)
        except Exception as e:
            logger.exception(f"[MP] Exception creating preference for order {order.id}")
            raise PaymentRequestFailed(order.id) from e

        if response.get('status') not in (200, 201):
            logger.error(f"[MP] Error creating preference for order {order.id}: {response}")
            raise PaymentRequestFailed(order.id)

        body = response.get('response') or {}
        redirect_url = body.get('sandbox_init_point') if self.sandbox else None
        redirect_url = redirect_url or body.get('init_point')
        if not redirect_url:
            logger.error(f"[MP] Preference without checkout URL for order {order.id}: {body}")
            raise PaymentRequestFailed(order.id)

        logger.info(f"[MP] Preference created: {body.get('id')} for order {order.id}")
        return PaymentHandoff(preference_id=body.get('id'), redirect_url=redirect_url)

    def get_payment(self, payment_id: str) -> Dict[str, Any]:
        """
        Fetch a payment by id (as notified by the webhook).

        Raises:
            ValueError: SDK not initialized.
            RuntimeError: provider answered with a non-200 status.
        """
        self._check_sdk()
        response = self.sdk.payment().get(payment_id, self.request_options)
        if response.get('status') != 200:
            logger.error(f"[MP] Error fetching payment {payment_id}: {response}")
            raise RuntimeError(f"Failed to fetch payment {payment_id}")
        return response['response']
