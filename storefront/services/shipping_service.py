"""
Shipping service - quotes carrier options for a destination CEP.

The resolver is stateless and idempotent per call. When the rate provider
(Melhor Envio) is unreachable or answers garbage, the buyer still gets the
in-store pickup option plus a warning, so checkout is never blocked by a
shipping outage.
"""
import hashlib
import json
import logging
import re
from dataclasses import dataclass, field, asdict
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import requests

from storefront.exceptions import ShippingProviderUnavailable, ValidationError
from storefront.services.pricing_service import CartLine, to_money

logger = logging.getLogger(__name__)

CEP_LENGTH = 8
CACHE_MODULE = 'shipping'

FALLBACK_WARNING = 'Frete por transportadora indisponível no momento: entre em contato para cotação.'


@dataclass(frozen=True)
class ShippingOption:
    """One way of getting the order to the buyer."""
    id: str
    carrier: str
    service: str
    price: Decimal
    estimated_days: int

    @property
    def label(self):
        return f"{self.carrier} - {self.service}"

    @property
    def is_pickup(self):
        return self.id == PICKUP_OPTION.id

    def to_dict(self):
        return {
            'id': self.id,
            'carrier': self.carrier,
            'service': self.service,
            'price': str(to_money(self.price)),
            'estimated_days': self.estimated_days,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ShippingOption':
        try:
            return cls(
                id=str(data['id']),
                carrier=str(data['carrier']),
                service=str(data['service']),
                price=to_money(data['price']),
                estimated_days=int(data.get('estimated_days') or 0),
            )
        except (KeyError, TypeError, ValueError, InvalidOperation):
            raise ValidationError('Opção de frete inválida')


PICKUP_OPTION = ShippingOption(
    id='pickup_store',
    carrier='Loja Física',
    service='Retirada no Balcão',
    price=Decimal('0.00'),
    estimated_days=0,
)


@dataclass
class ShippingQuote:
    options: List[ShippingOption] = field(default_factory=list)
    warning: Optional[str] = None

    @property
    def degraded(self):
        return self.warning is not None

    def find(self, option_id: str) -> Optional[ShippingOption]:
        return next((o for o in self.options if o.id == option_id), None)

    def to_dict(self):
        return {
            'options': [o.to_dict() for o in self.options],
            'warning': self.warning,
        }


def normalize_cep(cep: str) -> str:
    """Strip everything but digits."""
    return re.sub(r'\D', '', cep or '')


def validate_cep(cep: str) -> bool:
    """CEP brasileiro: exatamente 8 dígitos (após remover não-dígitos)."""
    return len(normalize_cep(cep)) == CEP_LENGTH


def format_cep(value: str) -> str:
    """Format as 00000-000 (partial input is formatted as far as it goes)."""
    digits = normalize_cep(value)[:CEP_LENGTH]
    if len(digits) > 5:
        return f"{digits[:5]}-{digits[5:]}"
    return digits


class MelhorEnvioClient:
    """Cliente para a API de cotação de frete do Melhor Envio."""

    SANDBOX_URL = "https://sandbox.melhorenvio.com.br"
    PRODUCTION_URL = "https://www.melhorenvio.com.br"
    CALCULATE_PATH = "/api/v2/me/shipment/calculate"

    def __init__(
        self,
        token: Optional[str],
        origin_cep: str,
        production: bool = False,
        timeout: float = 8.0,
        user_agent: str = 'Loja E-commerce',
    ):
        self.token = token
        self.origin_cep = normalize_cep(origin_cep)
        self.base_url = self.PRODUCTION_URL if production else self.SANDBOX_URL
        self.timeout = timeout
        self.headers = {
            'Accept': 'application/json',
            'Content-Type': 'application/json',
            'Authorization': f'Bearer {token}',
            # User-Agent is required by the Melhor Envio API
            'User-Agent': user_agent,
        }

    @classmethod
    def from_config(cls, config) -> 'MelhorEnvioClient':
        return cls(
            token=config.get('MELHOR_ENVIO_TOKEN'),
            origin_cep=config.get('CEP_ORIGEM', '01001000'),
            production=config.get('MELHOR_ENVIO_PRODUCTION', False),
            timeout=config.get('SHIPPING_TIMEOUT_SECONDS', 8.0),
            user_agent=config.get('MELHOR_ENVIO_USER_AGENT', 'Loja E-commerce'),
        )

    def build_payload(self, destination_cep: str, lines: List[CartLine]) -> Dict[str, Any]:
        products = []
        insurance_total = Decimal('0')
        for idx, line in enumerate(lines):
            line_value = to_money(Decimal(str(line.unit_price)) * line.quantity)
            insurance_total += line_value
            products.append({
                'id': str(line.product_id if line.product_id is not None else idx + 1),
                'weight': float(line.weight),
                'width': float(line.width),
                'height': float(line.height),
                'length': float(line.length),
                'quantity': int(line.quantity),
                'insurance_value': float(to_money(line.unit_price)),
            })
        return {
            'from': {'postal_code': self.origin_cep},
            'to': {'postal_code': destination_cep},
            'products': products,
            'options': {
                'insurance_value': float(insurance_total),
                'receipt': False,
                'own_hand': False,
            },
        }

    def calculate(self, destination_cep: str, lines: List[CartLine]) -> List[ShippingOption]:
        """
        Ask the provider for carrier options.

        Raises:
            ShippingProviderUnavailable: token missing, timeout, HTTP error or
                a response that cannot be parsed.
        """
        if not self.token:
            logger.error("[SHIPPING] MELHOR_ENVIO_TOKEN not configured")
            raise ShippingProviderUnavailable('Serviço de frete indisponível (token não configurado)')

        url = f"{self.base_url}{self.CALCULATE_PATH}"
        payload = self.build_payload(destination_cep, lines)
        logger.info(f"[SHIPPING] Calculating shipping from {self.origin_cep} to {destination_cep}")

        try:
            response = requests.post(url, json=payload, headers=self.headers, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.Timeout:
            logger.error(f"[SHIPPING] Timeout after {self.timeout}s calling Melhor Envio")
            raise ShippingProviderUnavailable('Tempo esgotado ao consultar o frete')
        except requests.HTTPError as e:
            logger.error(f"[SHIPPING] Melhor Envio error ({e.response.status_code}): {e.response.text}")
            raise ShippingProviderUnavailable('Erro ao consultar a API do Melhor Envio')
        except (requests.RequestException, ValueError) as e:
            logger.error(f"[SHIPPING] Unexpected error calling Melhor Envio: {e}")
            raise ShippingProviderUnavailable()

        if not isinstance(data, list):
            logger.error(f"[SHIPPING] Unexpected response shape: {type(data).__name__}")
            raise ShippingProviderUnavailable()

        return parse_options(data)


def parse_options(data: List[Dict[str, Any]]) -> List[ShippingOption]:
    """Map provider entries to ShippingOption, dropping entries flagged with an error."""
    options = []
    for entry in data:
        if not isinstance(entry, dict) or entry.get('error'):
            continue
        raw_price = entry.get('custom_price') or entry.get('price')
        if raw_price is None:
            continue
        raw_days = entry.get('custom_delivery_time') or entry.get('delivery_time') or 0
        try:
            price = to_money(raw_price)
            days = int(raw_days)
        except (InvalidOperation, TypeError, ValueError):
            logger.warning(f"[SHIPPING] Skipping option with unparseable price/days: {entry.get('id')}")
            continue
        company = entry.get('company') or {}
        options.append(ShippingOption(
            id=f"me_{entry.get('id')}",
            carrier=company.get('name') or 'Transportadora',
            service=entry.get('name') or 'Padrão',
            price=price,
            estimated_days=days,
        ))
    return sorted(options, key=lambda o: (o.price, o.estimated_days))


def _quote_cache_key(destination_cep: str, lines: List[CartLine]) -> str:
    volumes = sorted(
        (str(l.product_id), int(l.quantity), str(l.weight), str(l.width), str(l.height), str(l.length),
         str(to_money(l.unit_price)))
        for l in lines
    )
    raw = json.dumps([destination_cep, volumes])
    return hashlib.sha1(raw.encode('utf-8')).hexdigest()


def quote_shipping(destination_cep: str, lines: List[CartLine], client: MelhorEnvioClient,
                   cache=None, cache_ttl: int = 600) -> ShippingQuote:
    """
    Quote shipping options for the cart.

    Raises ValidationError for a malformed CEP or an empty cart; never raises
    for provider failures (the pickup fallback is returned instead).
    """
    cep = normalize_cep(destination_cep)
    if len(cep) != CEP_LENGTH:
        raise ValidationError('CEP inválido')
    if not lines:
        raise ValidationError('O carrinho está vazio')

    def load_options():
        carrier_options = client.calculate(cep, lines)
        if not carrier_options:
            raise ShippingProviderUnavailable('Nenhuma transportadora atende este CEP')
        return [asdict(o) for o in carrier_options + [PICKUP_OPTION]]

    try:
        if cache is not None:
            options = cache.memoize(CACHE_MODULE, _quote_cache_key(cep, lines), load_options, ttl=cache_ttl)
        else:
            options = load_options()
    except ShippingProviderUnavailable as e:
        logger.warning(f"[SHIPPING] Falling back to store pickup for CEP {cep}: {e.message}")
        _count_fallback()
        return ShippingQuote(options=[PICKUP_OPTION], warning=FALLBACK_WARNING)

    return ShippingQuote(options=[ShippingOption.from_dict(o) for o in options])


def _count_fallback():
    from storefront.blueprints.metrics import shipping_fallback_total
    shipping_fallback_total.inc()
