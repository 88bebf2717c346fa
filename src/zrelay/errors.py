"""Exceptions raised by zrelay.

Configuration errors are fatal at startup. Bind and forwarding errors are
fatal to a single relay unit only; they are caught at the unit boundary and
reported through the unit's :class:`~zrelay.relay.Outcome`.
"""


class RelayError(Exception):
    """Base class for all zrelay errors."""


class ConfigError(RelayError):
    """The configuration could not be loaded, or is not valid."""


class BindError(RelayError):
    """A relay unit could not bind one of its endpoints."""


class ForwardingError(RelayError):
    """A transport error occurred while a relay unit was forwarding."""


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
