''' JSON decoding for proxy.json, using the fastest decoder installed:
    msgspec, then orjson, then the standard library. Every variant exposes
    the same names: :func:`loads` accepts bytes or str, and
    :class:`DecodeError` is raised for malformed input.
'''

try:
    import msgspec
except ImportError:
    msgspec = None

try:
    import orjson
except ImportError:
    orjson = None

import json as _stdlib


if msgspec is not None:
    backend = 'msgspec'
    loads = msgspec.json.Decoder().decode
    DecodeError = msgspec.DecodeError

elif orjson is not None:
    backend = 'orjson'
    loads = orjson.loads
    DecodeError = orjson.JSONDecodeError

else:
    backend = 'json'
    loads = _stdlib.loads
    DecodeError = _stdlib.JSONDecodeError


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
