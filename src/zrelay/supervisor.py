""" Run one :class:`zrelay.relay.RelayUnit` per configured pair. Each unit
    runs in its own background thread; units share nothing, and the failure
    of one unit has no effect on the others.
"""

from __future__ import annotations

import logging
import queue
import threading

from . import relay
from .errors import ConfigError

logger = logging.getLogger('zrelay.Supervisor')


class Supervisor:
    """ Start and watch over a fixed set of relay units, one for each
        :class:`zrelay.config.PairSpec` in *specs*. The set of units does
        not change once the :class:`Supervisor` is created.

        The optional *context* is a :class:`zmq.Context` shared by all units;
        by default each unit creates its own.
    """

    interval = 1.0

    def __init__(self, specs, context=None):

        specs = tuple(specs)
        if len(specs) == 0:
            raise ConfigError('no pairs defined')

        self.specs = specs
        self.context = context
        self.events = queue.SimpleQueue()
        self.units = dict()
        self.outcomes = list()
        self.started = False
        self.shutdown = False
        self._lock = threading.Lock()


    def start(self):
        """ Create and start every relay unit. Returns the dictionary of
            units, keyed by label.
        """

        with self._lock:
            if self.started == True:
                return self.units
            self.started = True

            logger.info('loaded %d pair(s)', len(self.specs))

            for index, spec in enumerate(self.specs):
                label = spec.label(index)

                # Labels are used as keys; a duplicate name is not fatal,
                # but it gets a positional suffix to keep the units distinct.

                if label in self.units:
                    label = '%s-%d' % (label, index + 1)

                logger.info('[%s] XSUB bind: %s  |  XPUB bind: %s  |  HWM(rx,tx)=(%d, %d)',
                        label, spec.publisher_endpoint, spec.subscriber_endpoint,
                        spec.inbound_limit, spec.outbound_limit)

                unit = relay.RelayUnit(spec, label, self.context, self.events)
                self.units[label] = unit
                unit.start()

                if self.shutdown == True:
                    unit.stop()

        return self.units


    def run(self):
        """ Start the units, if necessary, and block until every one of them
            has terminated. Under normal operation the units run forever, as
            does this method. Returns the list of :class:`zrelay.relay.Outcome`
            instances, in the order the units terminated.
        """

        self.start()

        while len(self.outcomes) < len(self.units):
            # Wake up periodically so that signal handlers get a chance
            # to run in the main thread.

            try:
                outcome = self.events.get(timeout=self.interval)
            except queue.Empty:
                continue

            self.outcomes.append(outcome)

            remaining = len(self.units) - len(self.outcomes)
            logger.info('[%s] unit exited (%s); %d unit(s) still running',
                        outcome.label, outcome.reason.value, remaining)

        for unit in self.units.values():
            unit.join()

        return list(self.outcomes)


    def stop(self):
        """ Ask every unit to terminate. This is safe to call from a signal
            handler, and more than once.
        """

        self.shutdown = True

        for unit in tuple(self.units.values()):
            unit.stop()


    def wait_ready(self, timeout=None):
        """ Wait for every unit to be either running or terminated. Returns
            False if *timeout* expired first.
        """

        for unit in self.units.values():
            if unit.wait_ready(timeout) == False:
                return False

        return True


# end of class Supervisor



def run_pairs(specs, context=None):
    """ Run a relay unit for each of the *specs*, and return only when all
        of them have terminated.
    """

    supervisor = Supervisor(specs, context)
    return supervisor.run()


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
