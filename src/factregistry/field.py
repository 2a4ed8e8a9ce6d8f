"""
STARK Prime Field Arithmetic

Field: F_p where p = 2^251 + 17 * 2^192 + 1

This is the field of the Cairo virtual machine. Every memory address,
memory value and Fiat-Shamir challenge handled by the registry is a
canonical residue, i.e. an integer in [0, p).
"""

from __future__ import annotations
from typing import Iterable, List, Union

from .errors import ValidationError


# STARK prime: p = 2^251 + 17 * 2^192 + 1
STARK_PRIME = (1 << 251) + 17 * (1 << 192) + 1

# Width of one serialized element (uint256 word)
WORD_SIZE = 32


class FieldElement:
    """
    Element of the STARK prime field.

    Only the ring operations the cumulative product needs are provided.
    """

    __slots__ = ('value',)

    def __init__(self, value: int):
        """Create field element from integer."""
        self.value = value % STARK_PRIME

    # =========================================================================
    # Arithmetic Operations
    # =========================================================================

    def __add__(self, other: FieldLike) -> FieldElement:
        """Addition in F_p."""
        return FieldElement(self.value + _coerce(other))

    def __sub__(self, other: FieldLike) -> FieldElement:
        """Subtraction in F_p."""
        return FieldElement(self.value - _coerce(other) + STARK_PRIME)

    def __mul__(self, other: FieldLike) -> FieldElement:
        """Multiplication in F_p."""
        return FieldElement(self.value * _coerce(other))

    # =========================================================================
    # Comparison Operations
    # =========================================================================

    def __eq__(self, other: object) -> bool:
        if isinstance(other, FieldElement):
            return self.value == other.value
        if isinstance(other, int):
            return self.value == (other % STARK_PRIME)
        return False

    def __hash__(self) -> int:
        return hash(self.value)

    def __repr__(self) -> str:
        return f"FieldElement({self.value})"

    # =========================================================================
    # Serialization
    # =========================================================================

    def to_bytes(self) -> bytes:
        """Serialize to 32 bytes (big-endian)."""
        return self.value.to_bytes(WORD_SIZE, 'big')

    @classmethod
    def one(cls) -> FieldElement:
        """Multiplicative identity."""
        return cls(1)


FieldLike = Union[int, FieldElement]


def _coerce(other: FieldLike) -> int:
    if isinstance(other, FieldElement):
        return other.value
    if isinstance(other, int):
        return other
    raise TypeError(f"Cannot combine FieldElement with {type(other).__name__}")


# =============================================================================
# Canonical Residue Checks
# =============================================================================

def is_canonical(value: object, prime: int = STARK_PRIME) -> bool:
    """True if value is an int in [0, prime)."""
    if isinstance(value, bool) or not isinstance(value, int):
        return False
    return 0 <= value < prime


def require_canonical(
    values: Iterable[FieldLike],
    name: str,
    prime: int = STARK_PRIME
) -> List[int]:
    """
    Return values as plain ints, rejecting anything outside [0, prime).

    Raises:
        ValidationError: naming the first offending position
    """
    result = []
    for i, v in enumerate(values):
        if isinstance(v, FieldElement):
            v = v.value
        if not is_canonical(v, prime):
            raise ValidationError(f"{name}[{i}] is not a canonical field element: {v!r}")
        result.append(v)
    return result


def require_canonical_scalar(value: FieldLike, name: str, prime: int = STARK_PRIME) -> int:
    """Scalar version of require_canonical."""
    if isinstance(value, FieldElement):
        value = value.value
    if not is_canonical(value, prime):
        raise ValidationError(f"{name} is not a canonical field element: {value!r}")
    return value


def batch_product(factors: Iterable[FieldElement]) -> FieldElement:
    """Product of many field elements (1 for an empty iterable)."""
    acc = FieldElement.one()
    for f in factors:
        acc = acc * f
    return acc
