""" Process bootstrap for the relay daemon: parse the command line, set up
    logging, load the configuration, and run the :class:`Supervisor` until
    the process is asked to stop.
"""

import argparse
import logging
import os
import signal
import sys

from . import config
from .errors import ConfigError
from .supervisor import Supervisor

logger = logging.getLogger('zrelay.Daemon')

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def parse_arguments(argv=None):

    parser = argparse.ArgumentParser(
        prog='zrelayd',
        description='Relay ZeroMQ publish/subscribe traffic between XSUB and XPUB endpoints.')

    parser.add_argument('-d', '--directory',
        default=None,
        help='Directory containing proxy.yaml, proxy.toml, and/or proxy.json. Defaults to the current working directory.')
    parser.add_argument('-l', '--log-level',
        default=os.environ.get('ZRELAY_LOG', 'info'),
        help='Logging threshold (debug, info, warning, error). Defaults to $ZRELAY_LOG, or info.')

    return parser.parse_args(argv)


def setup_logging(level):

    numeric = logging.getLevelName(str(level).upper())
    if not isinstance(numeric, int):
        raise ConfigError('unknown log level: ' + repr(level))

    logging.basicConfig(
        level=numeric,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler()],
    )


def install_signal_handlers(supervisor):
    """ SIGINT and SIGTERM both trigger an orderly shutdown of every unit.
    """

    def handler(signum, frame):
        logger.info('received %s, shutting down', signal.Signals(signum).name)
        supervisor.stop()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def main(argv=None):
    """ Entry point for the zrelayd executable. Returns the process exit
        code: 1 if the configuration could not be loaded, otherwise 0 once
        every relay unit has terminated.
    """

    arguments = parse_arguments(argv)

    try:
        setup_logging(arguments.log_level)
        settings = config.load_settings(arguments.directory)
        supervisor = Supervisor(settings.pairs)
    except ConfigError as e:
        logging.basicConfig(format=LOG_FORMAT)
        logger.error('configuration error: %s', e)
        return 1

    install_signal_handlers(supervisor)
    supervisor.run()
    return 0


if __name__ == '__main__':
    sys.exit(main())


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
