import signal

import pytest
import zmq


@pytest.fixture
def context():
    """ A private context for the client-side sockets used by a test. Each
        relay unit uses its own context, so tcp:// is the only transport
        shared between the two.
    """

    context = zmq.Context()
    yield context
    context.destroy(linger=0)


@pytest.fixture
def units():
    """ Collect relay units created by a test, and make sure they are all
        stopped when the test is done, regardless of the outcome.
    """

    started = list()
    yield started

    for unit in started:
        unit.stop()
    for unit in started:
        unit.join(5)


@pytest.fixture
def restore_signals():

    saved = dict()
    for signum in (signal.SIGINT, signal.SIGTERM):
        saved[signum] = signal.getsignal(signum)

    yield

    for signum, handler in saved.items():
        signal.signal(signum, handler)


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
