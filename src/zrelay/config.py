""" Load and validate the relay configuration. The configuration is a list
    of pairs; each pair describes one relay unit:

        pairs:
          - name: telemetry
            frontend: "tcp://*:5557"
            backend: "tcp://*:5558"
            xsub_rcvhwm: 100000
            xpub_sndhwm: 100000

    *frontend* is where publishers connect, *backend* is where subscribers
    connect. The high-water marks are optional and default to 100,000.
    The *name* is optional; a positional label is used in its absence.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import tomllib
from typing import Optional, Tuple

import yaml

from . import json
from .errors import ConfigError

logger = logging.getLogger('zrelay.Config')

DEFAULT_HWM = 100_000

# libzmq stores high-water marks as a C int.

MAXIMUM_HWM = 2**31 - 1

# Files are read in this order; a later file replaces any top-level keys
# defined by an earlier one.

filenames = ('proxy.yaml', 'proxy.toml', 'proxy.json')

_known_keys = ('name', 'frontend', 'backend', 'xsub_rcvhwm', 'xpub_sndhwm')


def default_hwm() -> int:
    return DEFAULT_HWM


@dataclasses.dataclass(frozen=True)
class PairSpec:
    """ Validated description of one relay unit. Instances are immutable once
        created; a :class:`zrelay.relay.RelayUnit` never modifies its spec.
    """

    publisher_endpoint: str
    subscriber_endpoint: str
    name: Optional[str] = None
    inbound_limit: int = DEFAULT_HWM
    outbound_limit: int = DEFAULT_HWM

    def label(self, index: int) -> str:
        """ Return the name used in log messages for this pair, where *index*
            is the zero-based position of the pair in the configuration.
        """

        if self.name:
            return self.name
        return 'pair-%d' % (index + 1)


@dataclasses.dataclass(frozen=True)
class Settings:
    pairs: Tuple[PairSpec, ...]


def load_settings(directory=None) -> Settings:
    """ Load the configuration from the proxy.yaml, proxy.toml, and/or
        proxy.json files found in *directory*, which defaults to the
        current working directory. Any of the files may be absent; if
        none of them define any pairs a :class:`ConfigError` is raised.
    """

    if directory is None:
        directory = os.getcwd()

    merged = dict()

    for filename in filenames:
        path = os.path.join(directory, filename)
        if os.path.isfile(path):
            contents = _load_file(path)
            logger.debug('read configuration from %s', path)
            merged.update(contents)

    return settings_from_dict(merged)


def settings_from_dict(raw) -> Settings:
    """ Validate an already-parsed configuration mapping and return the
        corresponding :class:`Settings`.
    """

    try:
        pairs = raw['pairs']
    except KeyError:
        raise ConfigError('missing field: pairs')

    if not isinstance(pairs, list):
        raise ConfigError('pairs must be a list, not ' + type(pairs).__name__)

    if len(pairs) == 0:
        raise ConfigError('no pairs defined')

    specs = list()
    for index, entry in enumerate(pairs):
        specs.append(pair_from_dict(entry, index))

    return Settings(pairs=tuple(specs))


def pair_from_dict(entry, index=0) -> PairSpec:

    where = 'pairs[%d]' % (index)

    if not isinstance(entry, dict):
        raise ConfigError(where + ' must be a mapping')

    unknown = sorted(str(key) for key in entry if key not in _known_keys)
    if unknown:
        raise ConfigError('%s: unknown field(s): %s' % (where, ', '.join(unknown)))

    name = entry.get('name')
    if name is not None and not isinstance(name, str):
        raise ConfigError(where + '.name must be a string')

    frontend = _endpoint(entry, 'frontend', where)
    backend = _endpoint(entry, 'backend', where)

    rcvhwm = _hwm(entry, 'xsub_rcvhwm', where)
    sndhwm = _hwm(entry, 'xpub_sndhwm', where)

    return PairSpec(publisher_endpoint=frontend,
                    subscriber_endpoint=backend,
                    name=name,
                    inbound_limit=rcvhwm,
                    outbound_limit=sndhwm)


def _endpoint(entry, key, where):

    try:
        value = entry[key]
    except KeyError:
        raise ConfigError('%s: missing field: %s' % (where, key))

    if not isinstance(value, str) or value == '':
        raise ConfigError('%s.%s must be a non-empty string' % (where, key))

    return value


def _hwm(entry, key, where):

    value = entry.get(key)
    if value is None:
        return default_hwm()

    # bool is a subclass of int; 'true' is not a sensible high-water mark.

    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError('%s.%s must be an integer' % (where, key))

    if value < 0:
        raise ConfigError('%s.%s must not be negative: %d' % (where, key, value))

    if value > MAXIMUM_HWM:
        raise ConfigError('%s.%s must not exceed %d: %d' % (where, key, MAXIMUM_HWM, value))

    return value


def _load_file(path):

    try:
        with open(path, 'rb') as handle:
            raw = handle.read()
    except OSError as e:
        raise ConfigError('cannot read %s: %s' % (path, e)) from e

    try:
        if path.endswith('.yaml'):
            contents = yaml.safe_load(raw)
        elif path.endswith('.toml'):
            contents = tomllib.loads(raw.decode())
        else:
            contents = json.loads(raw)
    except (yaml.YAMLError, tomllib.TOMLDecodeError, json.DecodeError, UnicodeDecodeError) as e:
        raise ConfigError('cannot parse %s: %s' % (path, e)) from e

    # An empty YAML document parses to None.

    if contents is None:
        return dict()

    if not isinstance(contents, dict):
        raise ConfigError('%s: top level must be a mapping' % (path))

    return contents


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
