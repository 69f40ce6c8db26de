"""
neuron.py
~~~~~~~~~

A neuron is an ordered, immutable vector of integer genes.

It evaluates as a linear-threshold unit: the weighted sum of its inputs,
truncated toward zero when positive and clamped to zero otherwise.
Neurons serialize to a compact binary form (a big-endian gene count followed
by one big-endian signed 32-bit word per gene) and to the unpadded base32hex
text of those bytes.
"""

import base64
import logging
import math
import struct
from typing import BinaryIO, Generator, Iterable, Optional, Tuple

import numpy as np

from neuron.errors import ComputeArityError, ComputeRangeError, ConstructionError, DecodeError

# Configure module logger
logger = logging.getLogger(__name__)

# Random genes are drawn from [GENE_LOW, GENE_HIGH)
GENE_LOW = -1000
GENE_HIGH = 1000

INT32_MIN = -0x80000000
INT32_MAX = 0x7FFFFFFF
MAX_GENES = 0xFFFF

SIZE_FORMAT = '>H'
GENE_FORMAT = '>i'
GENE_WIDTH = 4


def read_exact(stream: BinaryIO, count: int) -> bytes:
    """
    Read exactly ``count`` bytes from a binary stream.

    Args:
        stream: Object with a ``read(n)`` method returning bytes
        count: Number of bytes required

    Returns:
        bytes: The data read

    Raises:
        DecodeError: If the stream ends before ``count`` bytes arrive
    """
    chunks = []
    remaining = count
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            raise DecodeError(
                f"unexpected end of stream: expected {count} bytes, "
                f"got {count - remaining}"
            )
        chunks.append(chunk)
        remaining -= len(chunk)
    return b''.join(chunks)


def _default_rng(rng: Optional[np.random.Generator]) -> np.random.Generator:
    return rng if rng is not None else np.random.default_rng()


class Neuron:
    """
    Linear-threshold neuron backed by a tuple of integer genes.

    Build one from explicit genes with ``Neuron(genes)``; the named
    constructors cover every other source (clone, bytes, stream, text,
    random).
    """

    def __init__(self, genes: Iterable[int]):
        """
        Copy the given genes into a new neuron.

        Args:
            genes: Ordered integer weights

        Raises:
            ConstructionError: If a gene is not an integer, does not fit a
                signed 32-bit word, or there are more than 65535 genes
        """
        values = []
        for index, gene in enumerate(genes):
            if isinstance(gene, bool) or not isinstance(gene, (int, np.integer)):
                raise ConstructionError(
                    f"gene {index}: expected an integer, got {gene!r}"
                )
            gene = int(gene)
            if not INT32_MIN <= gene <= INT32_MAX:
                raise ConstructionError(
                    f"gene {index}: {gene} does not fit a signed 32-bit integer"
                )
            values.append(gene)

        if len(values) > MAX_GENES:
            raise ConstructionError(
                f"expected at most {MAX_GENES} genes, got {len(values)}"
            )
        self._genes: Tuple[int, ...] = tuple(values)

    # ------------------------------------------------------------------
    # Named constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_genes(cls, genes: Iterable[int]) -> 'Neuron':
        return cls(genes)

    @classmethod
    def from_neuron(cls, other: 'Neuron') -> 'Neuron':
        """Clone another neuron."""
        return cls(other.genes)

    @classmethod
    def random(
        cls,
        size: int,
        rng: Optional[np.random.Generator] = None
    ) -> 'Neuron':
        """
        Build a neuron of ``size`` genes drawn uniformly from [-1000, 1000).

        Args:
            size: Number of genes
            rng: Generator to draw from; a fresh unseeded one when omitted

        Returns:
            Neuron: The random neuron
        """
        if size < 0:
            raise ConstructionError(f"size must be non-negative, got {size}")
        genes = _default_rng(rng).integers(GENE_LOW, GENE_HIGH, size=size)
        return cls(genes.tolist())

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Neuron':
        """
        Decode a neuron from its binary form.

        The buffer must hold exactly ``2 + 4 * size`` bytes, where ``size``
        is the big-endian count in the first two bytes.

        Raises:
            DecodeError: If the buffer is truncated or has trailing bytes
        """
        data = bytes(data)
        if len(data) < 2:
            raise DecodeError(
                f"expected at least 2 bytes for the gene count, got {len(data)}"
            )
        size = struct.unpack_from(SIZE_FORMAT, data)[0]
        expected = 2 + GENE_WIDTH * size
        if len(data) < expected:
            raise DecodeError(
                f"neuron declares {size} genes ({expected} bytes), "
                f"only {len(data)} bytes available"
            )
        if len(data) > expected:
            raise DecodeError(
                f"neuron declares {size} genes ({expected} bytes), "
                f"got {len(data)} bytes"
            )
        return cls(struct.unpack_from(f'>{size}i', data, 2))

    @classmethod
    def from_stream(cls, stream: BinaryIO) -> 'Neuron':
        """
        Read one neuron from a binary stream.

        Consumes exactly the neuron's bytes and leaves the stream positioned
        right after them.

        Raises:
            DecodeError: If the stream ends early
        """
        head = read_exact(stream, 2)
        size = struct.unpack(SIZE_FORMAT, head)[0]
        body = read_exact(stream, GENE_WIDTH * size)
        logger.debug(f"Read neuron with {size} genes from stream")
        return cls.from_bytes(head + body)

    @classmethod
    def from_text(cls, text: str) -> 'Neuron':
        """
        Decode a neuron from its base32hex text form.

        Raises:
            DecodeError: If the text is not valid unpadded base32hex or the
                decoded bytes are not a valid neuron
        """
        text = text.strip()
        padded = text + '=' * (-len(text) % 8)
        try:
            data = base64.b32hexdecode(padded)
        except ValueError as e:
            raise DecodeError(f"invalid base32hex text {text!r}: {e}") from e
        return cls.from_bytes(data)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def genes(self) -> Tuple[int, ...]:
        return self._genes

    def size(self) -> int:
        return len(self._genes)

    def gene(self, index: int) -> int:
        """Return the gene at ``index``; negative indices are rejected."""
        if not 0 <= index < len(self._genes):
            raise IndexError(
                f"gene index {index} out of range for {len(self._genes)} genes"
            )
        return self._genes[index]

    def equals(self, other: 'Neuron') -> bool:
        return self.size() == other.size() and all(
            mine == other.gene(i) for i, mine in enumerate(self._genes)
        )

    # ------------------------------------------------------------------
    # Behaviour
    # ------------------------------------------------------------------

    def compute(self, *params: float) -> int:
        """
        Evaluate the neuron.

        Args:
            *params: Exactly one value per gene

        Returns:
            int: The weighted sum truncated toward zero when positive, else 0

        Raises:
            ComputeArityError: If the parameter count differs from the size
            ComputeRangeError: If the weighted sum is infinite or NaN
        """
        if len(params) != len(self._genes):
            raise ComputeArityError(
                f"expected {len(self._genes)} parameters, got {len(params)}"
            )

        total = 0.0
        for value, gene in zip(params, self._genes):
            total += float(value) * gene

        if not math.isfinite(total):
            raise ComputeRangeError(f"weighted sum is not finite: {total}")

        if total > 0:
            return int(total)
        return 0

    def child(
        self,
        deviation: int,
        rng: Optional[np.random.Generator] = None
    ) -> 'Neuron':
        """
        Return a mutated copy of this neuron.

        Each gene moves by ``u - deviation // 2`` where ``u`` is drawn
        uniformly from [0, deviation).

        Args:
            deviation: Positive integer bounding the offsets
            rng: Generator to draw from; a fresh unseeded one when omitted

        Raises:
            ValueError: If ``deviation`` is not a positive integer
        """
        if (
            isinstance(deviation, bool)
            or not isinstance(deviation, (int, np.integer))
            or deviation <= 0
        ):
            raise ValueError(
                f"deviation must be a positive integer, got {deviation!r}"
            )
        deviation = int(deviation)
        offsets = _default_rng(rng).integers(0, deviation, size=self.size())
        half = deviation // 2
        return Neuron(
            gene + offset - half
            for gene, offset in zip(self._genes, offsets.tolist())
        )

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def marshal(self) -> Generator[int, None, None]:
        """
        Yield the binary form one byte at a time.

        Each call returns a new generator starting from the first byte.
        """
        yield from struct.pack(SIZE_FORMAT, len(self._genes))
        for gene in self._genes:
            yield from struct.pack(GENE_FORMAT, gene)

    def to_bytes(self) -> bytes:
        return bytes(self.marshal())

    def to_text(self) -> str:
        encoded = base64.b32hexencode(self.to_bytes()).decode('ascii')
        return encoded.rstrip('=')

    def __bytes__(self) -> bytes:
        return self.to_bytes()

    def __str__(self) -> str:
        return self.to_text()

    def __repr__(self) -> str:
        return f"Neuron({list(getattr(self, '_genes', ()))})"

    def __len__(self) -> int:
        return len(self._genes)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Neuron):
            return NotImplemented
        return self.equals(other)

    def __hash__(self) -> int:
        return hash(self._genes)
