"""
Unit tests for the order event channel.
"""

from storefront.services.event_channel import (
    OrderEventChannel, OrderEvent, ORDER_CREATED, ORDER_STATUS_CHANGED,
)


class TestOrderEventChannel:
    """Subscribe / publish / unsubscribe."""

    def test_events_arrive_in_order(self):
        channel = OrderEventChannel()
        subscription = channel.subscribe()

        channel.publish(OrderEvent(type=ORDER_CREATED, order_id='a'))
        channel.publish(OrderEvent(type=ORDER_STATUS_CHANGED, order_id='a', status='pago'))
        channel.publish(OrderEvent(type=ORDER_CREATED, order_id='b'))

        received = subscription.drain()
        assert [(e.type, e.order_id) for e in received] == [
            (ORDER_CREATED, 'a'), (ORDER_STATUS_CHANGED, 'a'), (ORDER_CREATED, 'b'),
        ]
        assert received[1].status == 'pago'

    def test_every_subscriber_gets_every_event(self):
        channel = OrderEventChannel()
        first, second = channel.subscribe(), channel.subscribe()

        assert channel.publish(OrderEvent(type=ORDER_CREATED, order_id='a')) == 2
        assert len(first.drain()) == 1
        assert len(second.drain()) == 1

    def test_unsubscribe_stops_delivery(self):
        channel = OrderEventChannel()
        with channel.subscribe() as subscription:
            assert channel.subscriber_count == 1

        assert channel.subscriber_count == 0
        assert channel.publish(OrderEvent(type=ORDER_CREATED, order_id='a')) == 0
        assert subscription.drain() == []
        assert list(subscription.listen(timeout=0.01)) == []

    def test_full_queue_drops_for_that_subscriber_only(self):
        channel = OrderEventChannel()
        slow = channel.subscribe(maxsize=1)
        fast = channel.subscribe()

        channel.publish(OrderEvent(type=ORDER_CREATED, order_id='a'))
        channel.publish(OrderEvent(type=ORDER_CREATED, order_id='b'))

        assert [e.order_id for e in slow.drain()] == ['a']
        assert [e.order_id for e in fast.drain()] == ['a', 'b']

    def test_get_times_out_with_none(self):
        channel = OrderEventChannel()
        assert channel.subscribe().get(timeout=0.01) is None

    def test_event_serializes(self):
        data = OrderEvent(type=ORDER_STATUS_CHANGED, order_id='a', status='enviado',
                          previous_status='em_separacao', source='operator').to_dict()
        assert data['type'] == 'order.status_changed'
        assert data['previous_status'] == 'em_separacao'
        assert 'occurred_at' in data
