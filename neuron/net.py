"""
net.py
~~~~~~

Two-layer feed-forward network of gene neurons.

A network maps named sensor readings to named boolean actions:

- the front layer holds one neuron per action, each reading every sensor
- the back layer holds one neuron per action, each reading the front
  layer's output vector
- action ``i`` fires when back neuron ``i`` returns a positive value

Sensor and action names are de-duplicated and sorted on construction; that
order fixes which input slot each sensor feeds and which output slot each
action reads.
"""

import io
import logging
import struct
from typing import BinaryIO, Dict, Iterable, List, Mapping, Optional

import numpy as np

from neuron.errors import (
    ComputeArityError,
    ConstructionError,
    DecodeError,
    EncodeError,
)
from neuron.neuron import Neuron, read_exact

# Configure module logger
logger = logging.getLogger(__name__)

# Count and length fields carry a uint16 in their upper half-word and leave
# the lower half-word zero.
FIELD_FORMAT = '>HH'
FIELD_WIDTH = 4
MAX_FIELD = 0xFFFF

LAYER_COUNT = 2
TRAILER = b'\x00\x00\x00\x00'
NAME_TERMINATOR = b'\x00'


def _usort(names: Iterable[str], kind: str) -> List[str]:
    """De-duplicate and sort names, rejecting anything the format can't hold."""
    if isinstance(names, (str, bytes)):
        raise ConstructionError(f"{kind}s must be a collection of names")
    unique = set()
    for name in names:
        if not isinstance(name, str):
            raise ConstructionError(f"{kind} name must be a string, got {name!r}")
        if '\x00' in name:
            raise ConstructionError(f"{kind} name {name!r} contains a NUL byte")
        unique.add(name)
    return sorted(unique)


def _pack_field(value: int, what: str) -> bytes:
    if value > MAX_FIELD:
        raise EncodeError(f"{what} {value} does not fit in 16 bits")
    return struct.pack(FIELD_FORMAT, value, 0)


def _read_field(stream: BinaryIO) -> int:
    return struct.unpack(FIELD_FORMAT, read_exact(stream, FIELD_WIDTH))[0]


def _read_names(stream: BinaryIO) -> List[str]:
    names = []
    for _ in range(_read_field(stream)):
        raw = bytearray()
        current = read_exact(stream, 1)
        while current != NAME_TERMINATOR:
            raw += current
            current = read_exact(stream, 1)
        try:
            names.append(raw.decode('utf-8'))
        except UnicodeDecodeError as e:
            raise DecodeError(f"name {bytes(raw)!r} is not valid UTF-8") from e
    return names


def _read_layer(stream: BinaryIO) -> List[Neuron]:
    return [Neuron.from_stream(stream) for _ in range(_read_field(stream))]


class NeuralNet:
    """
    Immutable network of a front and a back layer of neurons.

    Args:
        sensors: Sensor names, in any order, duplicates allowed
        actions: Action names, in any order, duplicates allowed
        front_layer: One neuron per action, each sized to the sensor count
        back_layer: One neuron per action, each sized to the action count

    Raises:
        ConstructionError: If any shape invariant does not hold
    """

    def __init__(
        self,
        sensors: Iterable[str],
        actions: Iterable[str],
        front_layer: Iterable[Neuron],
        back_layer: Iterable[Neuron]
    ):
        sorted_sensors = _usort(sensors, 'sensor')
        sorted_actions = _usort(actions, 'action')
        front = list(front_layer)
        back = list(back_layer)

        if not sorted_sensors:
            raise ConstructionError("no sensor supplied")
        if not sorted_actions:
            raise ConstructionError("no action supplied")

        actions_count = len(sorted_actions)
        if len(front) != actions_count:
            raise ConstructionError(
                f"expected one front neuron for each action [{actions_count}], "
                f"got {len(front)}"
            )
        if len(back) != actions_count:
            raise ConstructionError(
                f"expected one back neuron for each action [{actions_count}], "
                f"got {len(back)}"
            )

        for layer_name, layer, expected in (
            ('front', front, len(sorted_sensors)),
            ('back', back, actions_count),
        ):
            for index, neuron in enumerate(layer):
                if not isinstance(neuron, Neuron):
                    raise ConstructionError(
                        f"{layer_name} layer, neuron {index}: "
                        f"expected a Neuron, got {type(neuron).__name__}"
                    )
                if neuron.size() != expected:
                    raise ConstructionError(
                        f"{layer_name} layer, neuron {index}: "
                        f"expected size {expected}, got {neuron.size()}"
                    )

        self._sensors = tuple(sorted_sensors)
        self._actions = tuple(sorted_actions)
        self._front = tuple(front)
        self._back = tuple(back)

    @classmethod
    def random(
        cls,
        sensors: Iterable[str],
        actions: Iterable[str],
        rng: Optional[np.random.Generator] = None
    ) -> 'NeuralNet':
        """
        Build a network of random neurons shaped for the given names.

        Front neurons are drawn first, in action order, then back neurons.

        Args:
            sensors: Sensor names
            actions: Action names
            rng: Generator to draw genes from; a fresh unseeded one when omitted

        Returns:
            NeuralNet: The new network
        """
        sorted_sensors = _usort(sensors, 'sensor')
        sorted_actions = _usort(actions, 'action')
        if rng is None:
            rng = np.random.default_rng()

        front = [Neuron.random(len(sorted_sensors), rng) for _ in sorted_actions]
        back = [Neuron.random(len(sorted_actions), rng) for _ in sorted_actions]
        return cls(sorted_sensors, sorted_actions, front, back)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def sensors(self) -> List[str]:
        return list(self._sensors)

    def actions(self) -> List[str]:
        return list(self._actions)

    @property
    def front_layer(self) -> List[Neuron]:
        return list(self._front)

    @property
    def back_layer(self) -> List[Neuron]:
        return list(self._back)

    def neurons(self, index: int) -> Optional[List[Neuron]]:
        """Return layer 0 (front) or 1 (back), or None for any other index."""
        if index == 0:
            return self.front_layer
        if index == 1:
            return self.back_layer
        return None

    # ------------------------------------------------------------------
    # Behaviour
    # ------------------------------------------------------------------

    def compute(self, inputs: Mapping[str, float]) -> Dict[str, bool]:
        """
        Run a forward pass.

        Args:
            inputs: One value per sensor name, no more, no less

        Returns:
            dict: Action name to whether the action fires

        Raises:
            ComputeArityError: If the input keys differ from the sensors
            ComputeRangeError: If a weighted sum overflows to infinity
        """
        self._check_input(inputs)

        partial = [float(inputs[sensor]) for sensor in self._sensors]
        middle = [float(neuron.compute(*partial)) for neuron in self._front]

        return {
            action: self._back[i].compute(*middle) > 0
            for i, action in enumerate(self._actions)
        }

    def _check_input(self, inputs: Mapping[str, float]) -> None:
        keys = set(inputs)
        if len(inputs) == len(self._sensors) and keys == set(self._sensors):
            return
        missing = sorted(set(self._sensors) - keys)
        unexpected = sorted(keys - set(self._sensors), key=str)
        raise ComputeArityError(
            f"incoming mismatch sensors: missing {missing}, "
            f"unexpected {unexpected}"
        )

    def child(
        self,
        deviation: int,
        rng: Optional[np.random.Generator] = None
    ) -> 'NeuralNet':
        """
        Return a copy with every neuron replaced by a mutated child.

        Args:
            deviation: Positive integer bounding the per-gene offsets
            rng: Generator shared by all neurons, front layer first

        Raises:
            ValueError: If ``deviation`` is not a positive integer
        """
        if rng is None:
            rng = np.random.default_rng()
        front = [neuron.child(deviation, rng) for neuron in self._front]
        back = [neuron.child(deviation, rng) for neuron in self._back]
        return NeuralNet(self._sensors, self._actions, front, back)

    mutated_clone = child

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, sink: BinaryIO) -> None:
        """
        Write the network's binary form to a stream.

        Args:
            sink: Object with a ``write(bytes)`` method

        Raises:
            EncodeError: If a count, name or the total length overflows
        """
        sink.write(self.to_bytes())

    def to_bytes(self) -> bytes:
        """Return the binary form: length header, payload, zero trailer."""
        payload = bytearray()

        for kind, names in (('sensor', self._sensors), ('action', self._actions)):
            payload += _pack_field(len(names), f"{kind} count")
            for name in names:
                payload += name.encode('utf-8') + NAME_TERMINATOR

        payload += _pack_field(LAYER_COUNT, "layer count")
        for layer in (self._front, self._back):
            payload += _pack_field(len(layer), "neuron count")
            for neuron in layer:
                payload.extend(neuron.marshal())

        payload += TRAILER

        header = _pack_field(len(payload), "payload length")
        logger.debug(
            f"Encoded network with {len(self._sensors)} sensors and "
            f"{len(self._actions)} actions into {len(payload)} bytes"
        )
        return header + bytes(payload)

    @classmethod
    def load(cls, source: BinaryIO) -> 'NeuralNet':
        """
        Read a network from a binary stream.

        Consumes the header and exactly the payload length it declares.

        Args:
            source: Object with a ``read(n)`` method returning bytes

        Returns:
            NeuralNet: The decoded network

        Raises:
            DecodeError: If the data is truncated or badly framed
            ConstructionError: If the decoded parts violate a network invariant
        """
        length = _read_field(source)
        stream = io.BytesIO(read_exact(source, length))

        sensors = _read_names(stream)
        actions = _read_names(stream)

        layers = _read_field(stream)
        if layers != LAYER_COUNT:
            raise DecodeError(f"expected {LAYER_COUNT} layers, got {layers}")
        front = _read_layer(stream)
        back = _read_layer(stream)

        if read_exact(stream, len(TRAILER)) != TRAILER:
            raise DecodeError("missing zero trailer")
        leftover = len(stream.read())
        if leftover:
            raise DecodeError(f"{leftover} unexpected bytes after trailer")

        logger.debug(
            f"Decoded network with {len(sensors)} sensors and "
            f"{len(actions)} actions from {length} bytes"
        )
        return cls(sensors, actions, front, back)

    @classmethod
    def from_bytes(cls, data: bytes) -> 'NeuralNet':
        return cls.load(io.BytesIO(data))

    # ------------------------------------------------------------------
    # Text
    # ------------------------------------------------------------------

    def to_text(self) -> str:
        buf = io.StringIO()
        buf.write("SENSORS: ")
        buf.write(", ".join(self._sensors))
        buf.write("\nACTIONS: ")
        buf.write(", ".join(self._actions))
        buf.write("\nNEURONS:\n")
        for layer in (self._front, self._back):
            for neuron in layer:
                buf.write(neuron.to_text())
                buf.write("\n")
            buf.write("\n")
        buf.write("-----\n")
        return buf.getvalue()

    def __str__(self) -> str:
        return self.to_text()

    def __repr__(self) -> str:
        return (
            f"NeuralNet(sensors={list(self._sensors)}, "
            f"actions={list(self._actions)})"
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NeuralNet):
            return NotImplemented
        return (
            self._sensors == other._sensors
            and self._actions == other._actions
            and self._front == other._front
            and self._back == other._back
        )

    def __hash__(self) -> int:
        return hash((self._sensors, self._actions, self._front, self._back))
