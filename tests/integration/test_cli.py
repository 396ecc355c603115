"""
Integration tests for the maintenance CLI commands.
"""

import pytest

from storefront.services.cache_service import CacheService
from storefront.services.checkout_service import checkout
from storefront.services.pricing_service import CartLine
from storefront.services.shipping_service import PICKUP_OPTION


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


@pytest.fixture
def unpaid_order(session, product, buyer, address, gateway):
    return checkout(session, buyer.id, [CartLine.from_product(product, 4)], PICKUP_OPTION, address, gateway).order_id


def test_restore_stock(runner, unpaid_order, stock_of, product):
    result = runner.invoke(args=['restore-stock', '--stale-hours', '0'])

    assert result.exit_code == 0
    assert '1 pedido(s)' in result.output
    assert stock_of(product.id) == 20


def test_restore_stock_respects_window(runner, unpaid_order, stock_of, product):
    result = runner.invoke(args=['restore-stock', '--stale-hours', '48'])

    assert result.exit_code == 0
    assert '0 pedido(s)' in result.output
    assert stock_of(product.id) == 16


def test_restore_stock_rejects_negative_window(runner):
    result = runner.invoke(args=['restore-stock', '--stale-hours', '-1'])
    assert result.exit_code != 0


def test_init_db(runner):
    result = runner.invoke(args=['init-db'])
    assert result.exit_code == 0
    assert 'Tabelas criadas' in result.output


def test_clear_shipping_cache(runner, mocker):
    client = mocker.MagicMock()
    client.scan_iter.return_value = iter(['loja:shipping:a', 'loja:shipping:b'])
    mocker.patch('storefront.cli_commands.get_cache', return_value=CacheService(client, prefix='loja'))

    result = runner.invoke(args=['clear-shipping-cache'])

    assert result.exit_code == 0
    assert '2 cotação(ões)' in result.output
    client.scan_iter.assert_called_once_with(match='loja:shipping:*', count=100)


def test_clear_shipping_cache_without_redis(runner, mocker):
    mocker.patch('storefront.cli_commands.get_cache', return_value=CacheService(None))

    result = runner.invoke(args=['clear-shipping-cache'])

    assert result.exit_code == 0
    assert 'Cache desabilitado' in result.output
