""" Python implementation of zrelay, a ZeroMQ publish/subscribe relay. Each
    configured pair binds an XSUB endpoint for publishers and an XPUB
    endpoint for subscribers, and forwards traffic between them.
"""

# Utility components.

from . import errors
from . import json

# Configuration handling.

from . import config
load_settings = config.load_settings

# Primary public-facing interfaces.

from . import relay
from . import supervisor

from .config import PairSpec, Settings
from .errors import RelayError, ConfigError, BindError, ForwardingError
from .relay import RelayUnit, RelayState, Reason, Outcome, RelayStats
from .supervisor import Supervisor, run_pairs

# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
