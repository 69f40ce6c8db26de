"""
errors.py
~~~~~~~~~

Exception hierarchy shared by neurons, networks and the model store.

Every error derives from ``ValueError`` as well, so callers that already
guard input validation with ``except ValueError`` keep working.
"""


class NeuronError(Exception):
    """Base class for all errors raised by this package."""


class ConstructionError(NeuronError, ValueError):
    """A neuron or network could not be built from the supplied parts."""


class DecodeError(NeuronError, ValueError):
    """Binary or text input is truncated, oversized or malformed."""


class EncodeError(NeuronError, ValueError):
    """A value does not fit the binary format."""


class ComputeArityError(NeuronError, ValueError):
    """Inputs handed to ``compute`` do not match the expected shape."""


class ComputeRangeError(NeuronError, ValueError):
    """A weighted sum left the range of finite floats."""
