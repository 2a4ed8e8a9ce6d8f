"""
Keccak-256: The Registry Hash

Facts must match digests produced by independent components of the
verification pipeline, which hash with Ethereum's Keccak-256. That is the
original Keccak submission padding (0x01 ... 0x80), not NIST SHA3-256
(0x06 ... 0x80), so hashlib.sha3_256 cannot be used.

Structure:
- Keccak-f[1600] permutation over 25 64-bit lanes
- Sponge with rate 136 bytes (capacity 512 bits)
- Word helpers: every integer is hashed as a 32-byte big-endian word
"""

from __future__ import annotations
from typing import Union

from .errors import ValidationError
from .field import WORD_SIZE, FieldElement


class Keccak1600Permutation:
    """
    Keccak-f[1600] permutation.

    State: 1600 bits = 200 bytes, little-endian lanes.
    """

    # Keccak round constants
    RC = [
        0x0000000000000001, 0x0000000000008082, 0x800000000000808a,
        0x8000000080008000, 0x000000000000808b, 0x0000000080000001,
        0x8000000080008081, 0x8000000000008009, 0x000000000000008a,
        0x0000000000000088, 0x0000000080008009, 0x000000008000000a,
        0x000000008000808b, 0x800000000000008b, 0x8000000000008089,
        0x8000000000008003, 0x8000000000008002, 0x8000000000000080,
        0x000000000000800a, 0x800000008000000a, 0x8000000080008081,
        0x8000000000008080, 0x0000000080000001, 0x8000000080008008,
    ]

    # Rotation offsets, indexed [x][y]
    ROTATIONS = [
        [0, 36, 3, 41, 18],
        [1, 44, 10, 45, 2],
        [62, 6, 43, 15, 61],
        [28, 55, 25, 21, 56],
        [27, 20, 39, 8, 14],
    ]

    STATE_SIZE = 200

    def permute(self, state: bytearray) -> None:
        """Apply Keccak-f[1600] permutation in place."""
        lanes = [[0] * 5 for _ in range(5)]
        for x in range(5):
            for y in range(5):
                offset = 8 * (x + 5 * y)
                lanes[x][y] = int.from_bytes(state[offset:offset+8], 'little')

        for rc in self.RC:
            # θ (theta)
            C = [lanes[x][0] ^ lanes[x][1] ^ lanes[x][2] ^ lanes[x][3] ^ lanes[x][4]
                 for x in range(5)]
            D = [C[(x - 1) % 5] ^ self._rot64(C[(x + 1) % 5], 1) for x in range(5)]
            for x in range(5):
                for y in range(5):
                    lanes[x][y] ^= D[x]

            # ρ (rho) and π (pi)
            B = [[0] * 5 for _ in range(5)]
            for x in range(5):
                for y in range(5):
                    B[y][(2 * x + 3 * y) % 5] = self._rot64(
                        lanes[x][y], self.ROTATIONS[x][y]
                    )

            # χ (chi)
            for x in range(5):
                for y in range(5):
                    lanes[x][y] = B[x][y] ^ ((~B[(x + 1) % 5][y]) & B[(x + 2) % 5][y])

            # ι (iota)
            lanes[0][0] ^= rc

        for x in range(5):
            for y in range(5):
                offset = 8 * (x + 5 * y)
                state[offset:offset+8] = lanes[x][y].to_bytes(8, 'little')

    @staticmethod
    def _rot64(x: int, n: int) -> int:
        """64-bit rotation."""
        return ((x << n) | (x >> (64 - n))) & 0xFFFFFFFFFFFFFFFF


_PERMUTATION = Keccak1600Permutation()


class Keccak256:
    """
    Incremental Keccak-256 hasher.

    Usage mirrors hashlib: update() any number of times, then digest().
    """

    RATE = 136  # (1600 - 2 * 256) / 8
    DIGEST_SIZE = 32

    def __init__(self, data: bytes = b''):
        self._state = bytearray(Keccak1600Permutation.STATE_SIZE)
        self._buffer = bytearray()
        if data:
            self.update(data)

    def update(self, data: bytes) -> 'Keccak256':
        """Absorb data."""
        self._buffer.extend(data)
        rate = self.RATE
        while len(self._buffer) >= rate:
            self._absorb_block(self._state, self._buffer[:rate])
            del self._buffer[:rate]
        return self

    def digest(self) -> bytes:
        """Finalize a copy of the sponge; the hasher stays usable."""
        state = bytearray(self._state)
        block = bytearray(self.RATE)
        block[:len(self._buffer)] = self._buffer
        # Keccak padding: 0x01 ... 0x80 (the same byte when only one is free)
        block[len(self._buffer)] ^= 0x01
        block[self.RATE - 1] ^= 0x80
        self._absorb_block(state, block)
        return bytes(state[:self.DIGEST_SIZE])

    @staticmethod
    def _absorb_block(state: bytearray, block: bytes) -> None:
        for i, byte in enumerate(block):
            state[i] ^= byte
        _PERMUTATION.permute(state)


def keccak256(data: bytes) -> bytes:
    """One-shot Keccak-256 digest."""
    return Keccak256(data).digest()


# =============================================================================
# WORD ENCODING
# =============================================================================

Word = Union[int, bytes, FieldElement]


def to_word(value: Word) -> bytes:
    """
    Encode a value as one 32-byte big-endian word.

    ints and FieldElements are encoded as uint256; bytes must already be
    exactly 32 bytes long (digests pass through unchanged).
    """
    if isinstance(value, FieldElement):
        return value.to_bytes()
    if isinstance(value, (bytes, bytearray)):
        if len(value) != WORD_SIZE:
            raise ValidationError(f"Word must be {WORD_SIZE} bytes, got {len(value)}")
        return bytes(value)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Cannot encode {type(value).__name__} as a word")
    if value < 0 or value >= 1 << (8 * WORD_SIZE):
        raise ValidationError(f"Value out of uint256 range: {value}")
    return value.to_bytes(WORD_SIZE, 'big')


def encode_words(*values: Word) -> bytes:
    """Concatenate the word encodings of values."""
    return b''.join(to_word(v) for v in values)


def keccak_words(*values: Word) -> bytes:
    """Keccak-256 over the word encodings of values."""
    h = Keccak256()
    for v in values:
        h.update(to_word(v))
    return h.digest()


def word_to_int(word: bytes) -> int:
    """Decode a 32-byte big-endian word."""
    return int.from_bytes(word, 'big')
