"""
Unit tests for shipping quotes (Melhor Envio client + pickup fallback).
"""

import pytest
import requests
from decimal import Decimal

from storefront.exceptions import ShippingProviderUnavailable, ValidationError
from storefront.services.cache_service import CacheService
from storefront.services.pricing_service import CartLine
from storefront.services.shipping_service import (
    MelhorEnvioClient, ShippingOption, PICKUP_OPTION, FALLBACK_WARNING,
    parse_options, quote_shipping, normalize_cep, validate_cep, format_cep,
)

CALCULATE_URL = 'https://sandbox.melhorenvio.com.br/api/v2/me/shipment/calculate'

MELHOR_ENVIO_RESPONSE = [
    {
        'id': 2, 'name': 'SEDEX', 'price': '45.50', 'custom_price': '45.50',
        'delivery_time': 3, 'custom_delivery_time': 3,
        'company': {'id': 1, 'name': 'Correios'},
    },
    {
        'id': 1, 'name': 'PAC', 'price': '25.90', 'custom_price': '25.90',
        'delivery_time': 8, 'custom_delivery_time': 8,
        'company': {'id': 1, 'name': 'Correios'},
    },
    {
        'id': 3, 'name': '.Package', 'error': 'Transportadora não atende este trecho.',
        'company': {'id': 2, 'name': 'Jadlog'},
    },
]


@pytest.fixture
def lines():
    return [
        CartLine(product_id=1, name='Camiseta', unit_price=Decimal('100.00'), quantity=2),
        CartLine(product_id=2, name='Boné', unit_price=Decimal('49.90'), quantity=1),
    ]


@pytest.fixture
def me_client():
    return MelhorEnvioClient(token='token-123', origin_cep='01001-000', timeout=2)


class DictRedis:
    """In-memory stand-in for the redis client calls CacheService makes."""

    def __init__(self):
        self.data = {}

    def get(self, key):
        return self.data.get(key)

    def setex(self, key, ttl, value):
        self.data[key] = value


class RecordingClient:
    def __init__(self, options=None, error=None):
        self.options = options or []
        self.error = error
        self.calls = 0

    def calculate(self, cep, lines):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.options)


class TestCep:
    """Postal code helpers."""

    def test_normalize_and_format(self):
        assert normalize_cep('01310-100') == '01310100'
        assert format_cep('01310100') == '01310-100'

    @pytest.mark.parametrize('cep,valid', [
        ('01310-100', True),
        ('01310100', True),
        ('0131010', False),
        ('013101000', False),
        ('', False),
        ('abcde-fgh', False),
    ])
    def test_validate(self, cep, valid):
        assert validate_cep(cep) is valid


def fake_response(mocker, payload, status=200):
    response = mocker.MagicMock()
    response.status_code = status
    response.json.return_value = payload
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f'{status} Client Error', response=response)
    return response


@pytest.fixture
def http_post(mocker):
    return mocker.patch('storefront.services.shipping_service.requests.post')


class TestMelhorEnvioClient:
    """HTTP client against a mocked Melhor Envio API."""

    def test_calculate_parses_and_sorts_by_price(self, me_client, lines, http_post, mocker):
        http_post.return_value = fake_response(mocker, MELHOR_ENVIO_RESPONSE)

        options = me_client.calculate('01310100', lines)

        assert [o.id for o in options] == ['me_1', 'me_2']
        assert options[0] == ShippingOption('me_1', 'Correios', 'PAC', Decimal('25.90'), 8)
        assert options[1].label == 'Correios - SEDEX'

        args, kwargs = http_post.call_args
        assert args[0] == CALCULATE_URL
        assert kwargs['headers']['Authorization'] == 'Bearer token-123'
        assert 'User-Agent' in kwargs['headers']
        assert kwargs['timeout'] == 2

    def test_payload_carries_volumes_and_insurance(self, me_client, lines, http_post, mocker):
        http_post.return_value = fake_response(mocker, [])
        me_client.calculate('01310100', lines)

        payload = http_post.call_args.kwargs['json']
        assert payload['from'] == {'postal_code': '01001000'}
        assert payload['to'] == {'postal_code': '01310100'}
        assert [p['quantity'] for p in payload['products']] == [2, 1]
        assert payload['options']['insurance_value'] == pytest.approx(249.90)

    def test_http_error_raises_unavailable(self, me_client, lines, http_post, mocker):
        http_post.return_value = fake_response(mocker, {'message': 'Unauthenticated.'}, status=401)
        with pytest.raises(ShippingProviderUnavailable):
            me_client.calculate('01310100', lines)

    def test_timeout_raises_unavailable(self, me_client, lines, http_post):
        http_post.side_effect = requests.Timeout('read timed out')
        with pytest.raises(ShippingProviderUnavailable) as exc:
            me_client.calculate('01310100', lines)
        assert 'Tempo esgotado' in exc.value.message

    def test_unexpected_shape_raises_unavailable(self, me_client, lines, http_post, mocker):
        http_post.return_value = fake_response(mocker, {'errors': {}})
        with pytest.raises(ShippingProviderUnavailable):
            me_client.calculate('01310100', lines)

    def test_missing_token_raises_without_request(self, lines, http_post):
        client = MelhorEnvioClient(token=None, origin_cep='01001000')
        with pytest.raises(ShippingProviderUnavailable):
            client.calculate('01310100', lines)
        http_post.assert_not_called()

    def test_parse_skips_unpriced_entries(self):
        options = parse_options([
            {'id': 7, 'name': 'Expresso', 'company': {'name': 'Loggi'}},
            {'id': 8, 'name': 'Econômico', 'price': '12.00', 'delivery_time': 6, 'company': {'name': 'Loggi'}},
        ])
        assert [o.id for o in options] == ['me_8']


class TestQuoteShipping:
    """Resolver: options + pickup, or pickup alone with a warning."""

    def test_invalid_cep_never_calls_provider(self, lines):
        client = RecordingClient(options=[ShippingOption('me_1', 'Correios', 'PAC', Decimal('25.90'), 8)])

        with pytest.raises(ValidationError) as exc:
            quote_shipping('123', lines, client)

        assert exc.value.message == 'CEP inválido'
        assert client.calls == 0

    def test_empty_cart(self):
        with pytest.raises(ValidationError):
            quote_shipping('01310-100', [], RecordingClient())

    def test_options_followed_by_pickup(self, lines):
        pac = ShippingOption('me_1', 'Correios', 'PAC', Decimal('25.90'), 8)
        quote = quote_shipping('01310-100', lines, RecordingClient(options=[pac]))

        assert quote.options == [pac, PICKUP_OPTION]
        assert quote.warning is None
        assert quote.degraded is False

    def test_provider_failure_falls_back_to_pickup(self, lines):
        client = RecordingClient(error=ShippingProviderUnavailable('Tempo esgotado ao consultar o frete'))
        quote = quote_shipping('01310-100', lines, client)

        assert quote.options == [PICKUP_OPTION]
        assert quote.warning == FALLBACK_WARNING
        assert quote.degraded is True

    def test_no_carrier_options_falls_back_to_pickup(self, lines):
        quote = quote_shipping('01310-100', lines, RecordingClient(options=[]))
        assert quote.options == [PICKUP_OPTION]
        assert quote.degraded is True

    def test_pickup_is_free(self):
        assert PICKUP_OPTION.price == Decimal('0.00')
        assert PICKUP_OPTION.is_pickup is True
        assert PICKUP_OPTION.to_dict()['price'] == '0.00'

    def test_successful_quote_is_cached(self, lines):
        pac = ShippingOption('me_1', 'Correios', 'PAC', Decimal('25.90'), 8)
        client = RecordingClient(options=[pac])
        cache = CacheService(DictRedis())

        first = quote_shipping('01310-100', lines, client, cache=cache)
        second = quote_shipping('01310100', lines, client, cache=cache)

        assert client.calls == 1
        assert second.options == first.options

    def test_fallback_is_not_cached(self, lines):
        client = RecordingClient(error=ShippingProviderUnavailable())
        cache = CacheService(DictRedis())

        quote_shipping('01310-100', lines, client, cache=cache)
        quote_shipping('01310-100', lines, client, cache=cache)

        assert client.calls == 2
        assert cache.client.data == {}

    def test_find_option(self, lines):
        pac = ShippingOption('me_1', 'Correios', 'PAC', Decimal('25.90'), 8)
        quote = quote_shipping('01310-100', lines, RecordingClient(options=[pac]))
        assert quote.find('me_1') == pac
        assert quote.find('pickup_store') == PICKUP_OPTION
        assert quote.find('me_99') is None
