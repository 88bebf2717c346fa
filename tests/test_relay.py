import dataclasses
import logging
import queue
import threading

import pytest
import zmq

import zrelay
from zrelay import relay

from relaytools import connect, drain, loopback_spec, pump, receive


def start(units, spec, label=None):
    unit = relay.start_unit(spec, label)
    units.append(unit)
    assert unit.wait_ready(5)
    return unit


def test_invalid_endpoint():

    spec = zrelay.PairSpec('bad', 'bad', inbound_limit=1, outbound_limit=1)
    unit = relay.RelayUnit(spec, 'test')

    outcome = unit.run()

    assert outcome.reason is relay.Reason.BIND_FAILURE
    assert outcome.state is relay.RelayState.TERMINATED
    assert unit.state is relay.RelayState.TERMINATED
    assert "'bad'" in outcome.detail
    assert unit.publisher_socket is None
    assert unit.subscriber_socket is None


def test_second_endpoint_invalid():
    """ Binding is all-or-nothing: the XSUB socket binds successfully, the
        XPUB socket does not, and the unit never starts forwarding.
    """

    spec = zrelay.PairSpec('tcp://127.0.0.1:*', 'bogus://nowhere')
    unit = relay.RelayUnit(spec)

    outcome = unit.run()

    assert outcome.reason is relay.Reason.BIND_FAILURE
    assert 'bogus://nowhere' in outcome.detail
    assert unit.endpoints == (None, None)


def test_default_label():

    unit = relay.RelayUnit(loopback_spec())
    assert unit.label == 'pair-1'
    assert unit.state is relay.RelayState.UNBOUND

    unit.stop()
    unit.run()


def test_forward_messages(context, units):

    unit = start(units, loopback_spec(), 'data')
    assert unit.state is relay.RelayState.RUNNING

    xsub_endpoint, xpub_endpoint = unit.endpoints
    assert xsub_endpoint.startswith('tcp://127.0.0.1:')
    assert xpub_endpoint.startswith('tcp://127.0.0.1:')
    assert xsub_endpoint != xpub_endpoint

    publisher = connect(context, zmq.PUB, xsub_endpoint)
    subscriber = connect(context, zmq.SUB, xpub_endpoint, subscribe=b'topic')

    warmup = [b'topic', b'warmup']
    pump(publisher, subscriber, warmup)

    expected = list()
    for sequence in range(100):
        frames = [b'topic', b'%d' % (sequence), b'\x00\xffpayload']
        expected.append(frames)
        publisher.send_multipart(frames)

    # The sequence numbers may be preceded by stragglers from the warmup.

    first = receive(subscriber)
    while first == warmup:
        first = receive(subscriber)

    received = [first]
    for sequence in range(99):
        received.append(receive(subscriber))

    assert received == expected

    unit.stop()
    outcome = unit.join(5)
    assert outcome.reason is relay.Reason.CANCELLED
    assert outcome.stats.messages_forwarded >= 100


def test_topic_filter(context, units):

    unit = start(units, loopback_spec())

    publisher = connect(context, zmq.PUB, unit.endpoints[0])
    subscriber = connect(context, zmq.SUB, unit.endpoints[1], subscribe=b'wanted')

    pump(publisher, subscriber, [b'wanted', b'first'])

    publisher.send_multipart([b'unwanted', b'skip'])
    publisher.send_multipart([b'wanted', b'last'])

    discarded = drain(subscriber, [b'wanted', b'last'])
    assert [b'unwanted', b'skip'] not in discarded


def test_forward_subscriptions(context, units):

    unit = start(units, loopback_spec(), 'control')

    # An XPUB socket on the publisher side sees the subscription requests
    # exactly as the relay forwards them.

    upstream = connect(context, zmq.XPUB, unit.endpoints[0])
    subscriber = connect(context, zmq.SUB, unit.endpoints[1], subscribe=b'topic')

    assert receive(upstream) == [b'\x01topic']

    subscriber.setsockopt(zmq.UNSUBSCRIBE, b'topic')
    assert receive(upstream) == [b'\x00topic']

    unit.stop()
    outcome = unit.join(5)
    assert outcome.stats.subscriptions_forwarded >= 2


def test_stop(units):

    unit = start(units, loopback_spec(), 'stopper')

    unit.stop()
    outcome = unit.join(5)

    assert unit.thread.is_alive() == False
    assert outcome is unit.outcome
    assert outcome.label == 'stopper'
    assert outcome.reason is relay.Reason.CANCELLED
    assert outcome.detail is None
    assert str(outcome) == 'cancelled'
    assert unit.state is relay.RelayState.TERMINATED

    # Redundant calls are a no-op.

    unit.stop()
    unit.stop()


def test_stop_before_run():

    unit = relay.RelayUnit(loopback_spec())
    unit.stop()

    outcome = unit.run()

    assert outcome.reason is relay.Reason.CANCELLED
    assert unit.endpoints == (None, None)


def test_events_queue():

    events = queue.SimpleQueue()

    unit = relay.RelayUnit(zrelay.PairSpec('bad', 'bad'), 'queued', events=events)
    unit.start()

    outcome = events.get(timeout=5)
    assert outcome.label == 'queued'
    assert outcome.reason is relay.Reason.BIND_FAILURE
    assert unit.join(5) is outcome


def test_no_restart():

    unit = relay.RelayUnit(zrelay.PairSpec('bad', 'bad'))
    unit.run()

    with pytest.raises(RuntimeError):
        unit.run()

    with pytest.raises(RuntimeError):
        unit._transition(relay.RelayState.RUNNING)


def test_start_twice(units):

    unit = start(units, loopback_spec())

    with pytest.raises(RuntimeError):
        unit.start()


def test_bind_collision(units):
    """ A second unit asking for an address already bound by the first fails
        to bind, and has no effect on the first.
    """

    first = start(units, loopback_spec(), 'first')

    spec = zrelay.PairSpec(first.endpoints[0], 'tcp://127.0.0.1:*')
    second = start(units, spec, 'second')

    outcome = second.join(5)
    assert outcome.reason is relay.Reason.BIND_FAILURE
    assert first.state is relay.RelayState.RUNNING


def test_slow_subscriber(context, units, caplog):
    """ A subscriber that never reads must not stall delivery to the other
        subscribers of the same unit.
    """

    unit = start(units, loopback_spec(outbound_limit=10), 'slow')

    publisher = connect(context, zmq.PUB, unit.endpoints[0])

    stalled = context.socket(zmq.SUB)
    stalled.setsockopt(zmq.LINGER, 0)
    stalled.setsockopt(zmq.RCVHWM, 1)
    stalled.connect(unit.endpoints[1])
    stalled.setsockopt(zmq.SUBSCRIBE, b'')

    active = connect(context, zmq.SUB, unit.endpoints[1], subscribe=b'')

    pump(publisher, active, [b'topic', b'warmup'])

    payload = b'x' * 1024
    for sequence in range(20000):
        publisher.send_multipart([b'topic', payload])

    pump(publisher, active, [b'topic', b'marker'], timeout=10)

    assert unit.state is relay.RelayState.RUNNING

    # Messages the stalled subscriber never receives are dropped inside the
    # XPUB socket; the relay only counts what it hands to that socket.

    with caplog.at_level(logging.INFO):
        unit.stop()
        outcome = unit.join(5)

    assert outcome.reason is relay.Reason.CANCELLED
    assert outcome.stats.messages_forwarded > 2
    assert outcome.stats.subscriptions_forwarded == 1
    assert [field.name for field in dataclasses.fields(outcome.stats)] == ['messages_forwarded', 'subscriptions_forwarded']
    assert 'messages forwarded=%d' % (outcome.stats.messages_forwarded) in caplog.text


def test_stop_reentrant(units):
    """ A signal handler can interrupt stop() on the main thread and call it
        again; the second call must not wait on the first.
    """

    unit = start(units, loopback_spec(), 'reentrant')

    with unit._sig_lock:
        unit.stop()

    outcome = unit.join(5)
    assert outcome.reason is relay.Reason.CANCELLED


def test_context_terminated():
    """ Terminating a context shared with the unit is a cancellation, not a
        failure.
    """

    context = zmq.Context()
    unit = relay.start_unit(loopback_spec(), 'shared', context=context)
    assert unit.wait_ready(5)

    terminator = threading.Thread(target=context.term, daemon=True)
    terminator.start()

    outcome = unit.join(5)
    terminator.join(5)

    assert terminator.is_alive() == False
    assert outcome.reason is relay.Reason.CANCELLED
    assert unit.state is relay.RelayState.TERMINATED


class BrokenSubscriptions(relay.RelayUnit):

    def _subscriptions(self, xpub, xsub):
        raise zmq.ZMQError(zmq.ENOTSUP)


def test_forwarding_failure(context, units):

    unit = BrokenSubscriptions(loopback_spec(), 'broken')
    units.append(unit)
    unit.start()
    assert unit.wait_ready(5)

    subscriber = connect(context, zmq.SUB, unit.endpoints[1], subscribe=b'topic')

    outcome = unit.join(5)
    assert outcome is not None
    assert outcome.reason is relay.Reason.FORWARDING_FAILURE
    assert outcome.detail
    assert unit.publisher_socket is None
    assert unit.subscriber_socket is None


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
