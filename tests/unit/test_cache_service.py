"""
Unit tests for the Redis cache (client mocked).
"""

from decimal import Decimal

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from storefront.services import cache_service
from storefront.services.cache_service import CacheService


@pytest.fixture
def redis_client(mocker):
    return mocker.MagicMock()


def test_round_trip_keeps_decimals(redis_client):
    store = {}
    redis_client.setex.side_effect = lambda key, ttl, value: store.__setitem__(key, value)
    redis_client.get.side_effect = store.get
    cache = CacheService(redis_client, prefix='loja', default_ttl=60)

    assert cache.set('shipping_quote', 'abc', [{'id': 'me_1', 'price': Decimal('25.90')}], ttl=600)

    redis_client.setex.assert_called_once()
    key, ttl, _ = redis_client.setex.call_args.args
    assert (key, ttl) == ('loja:shipping_quote:abc', 600)
    assert cache.get('shipping_quote', 'abc') == [{'id': 'me_1', 'price': Decimal('25.90')}]


def test_default_ttl(redis_client):
    CacheService(redis_client, default_ttl=45).set('m', 'k', 1)
    assert redis_client.setex.call_args.args[1] == 45


def test_redis_errors_are_misses(redis_client):
    redis_client.get.side_effect = RedisConnectionError('down')
    redis_client.setex.side_effect = RedisConnectionError('down')
    cache = CacheService(redis_client)

    assert cache.get('m', 'k') is None
    assert cache.set('m', 'k', 1) is False


def test_disabled_cache_is_inert():
    cache = CacheService(None)
    assert cache.enabled is False
    assert cache.get('m', 'k') is None
    assert cache.set('m', 'k', 1) is False


def test_from_config_disabled(mocker):
    from_url = mocker.patch.object(cache_service.redis, 'from_url')
    cache = CacheService.from_config({'CACHE_ENABLED': False})

    assert cache.enabled is False
    from_url.assert_not_called()


def test_from_config_unreachable_redis(mocker):
    client = mocker.MagicMock()
    client.ping.side_effect = RedisConnectionError('refused')
    mocker.patch.object(cache_service.redis, 'from_url', return_value=client)

    cache = CacheService.from_config({'CACHE_ENABLED': True, 'REDIS_URL': 'redis://nowhere:6379/0'})

    assert cache.enabled is False


def test_delete(redis_client):
    cache = CacheService(redis_client, prefix='loja')

    assert cache.delete('shipping_quote', 'abc') is True
    redis_client.delete.assert_called_once_with('loja:shipping_quote:abc')

    redis_client.delete.side_effect = RedisConnectionError('down')
    assert cache.delete('shipping_quote', 'abc') is False
    assert CacheService(None).delete('shipping_quote', 'abc') is False


def test_invalidate_module(redis_client):
    redis_client.scan_iter.return_value = iter(['loja:shipping_quote:a', 'loja:shipping_quote:b'])
    cache = CacheService(redis_client, prefix='loja')

    assert cache.invalidate_module('shipping_quote') == 2
    redis_client.scan_iter.assert_called_once_with(match='loja:shipping_quote:*', count=100)
    assert redis_client.delete.call_count == 2


class TestMemoize:

    @pytest.fixture
    def cache(self, redis_client):
        store = {}
        redis_client.setex.side_effect = lambda key, ttl, value: store.__setitem__(key, value)
        redis_client.get.side_effect = store.get
        return CacheService(redis_client, default_ttl=60)

    def test_loads_once(self, cache, mocker):
        loader = mocker.Mock(return_value={'price': Decimal('25.90')})

        assert cache.memoize('m', 'k', loader, ttl=300) == {'price': Decimal('25.90')}
        assert cache.memoize('m', 'k', loader, ttl=300) == {'price': Decimal('25.90')}

        loader.assert_called_once_with()
        assert cache.client.setex.call_args.args[1] == 300

    def test_loader_error_propagates_and_caches_nothing(self, cache, mocker):
        loader = mocker.Mock(side_effect=RuntimeError('provider down'))

        with pytest.raises(RuntimeError):
            cache.memoize('m', 'k', loader)

        cache.client.setex.assert_not_called()

    def test_disabled_cache_always_loads(self, mocker):
        loader = mocker.Mock(return_value=[1, 2])
        cache = CacheService(None)

        assert cache.memoize('m', 'k', loader) == [1, 2]
        assert cache.memoize('m', 'k', loader) == [1, 2]
        assert loader.call_count == 2
