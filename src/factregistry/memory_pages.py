"""
Memory-Page Commitment Engine

Turns a slice of program memory into:
    page_hash = Keccak(canonical word encoding of the page)
    product   = ∏ (value - z + alpha · address)  mod p
    fact      = Keccak(TYPE ‖ page_hash ‖ product ‖ size)

and registers the fact into a fact store.

Two page layouts share one fact format:
- Regular:    sparse interleaved [a0, v0, a1, v1, ...]; the hash covers
              addresses and values
- Continuous: dense [v0, v1, ...] from one start address; the hash
              covers values only, addresses are implicit by position

Every call either commits fully or raises before touching any state.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import logging

from .errors import NotFoundError, ValidationError
from .events import EventLog, MemoryPageRegistered
from .field import (
    STARK_PRIME,
    FieldElement,
    FieldLike,
    batch_product,
    require_canonical,
    require_canonical_scalar,
)
from .keccak import Keccak256, to_word
from .registry import FactRegistry, FactStore
from .tags import PageType, tag_bytes


logger = logging.getLogger(__name__)


# =============================================================================
# PURE COMPUTATION
# =============================================================================

def cumulative_product(
    entries: Iterable[Tuple[int, int]],
    z: FieldLike,
    alpha: FieldLike
) -> int:
    """
    Fold (address, value) entries into one field element.

    product = ∏ (value - z + alpha · address)  mod p, starting at 1.
    Entry order matters.
    """
    z = z if isinstance(z, FieldElement) else FieldElement(z)
    alpha = alpha if isinstance(alpha, FieldElement) else FieldElement(alpha)
    return batch_product(
        FieldElement(value) - z + alpha * FieldElement(address)
        for address, value in entries
    ).value


def _hash_words(values: Sequence[int]) -> bytes:
    h = Keccak256()
    for v in values:
        h.update(to_word(v))
    return h.digest()


def regular_page_hash(pairs: Sequence[int]) -> bytes:
    """Keccak over the interleaved address/value words."""
    return _hash_words(pairs)


def continuous_page_hash(values: Sequence[int]) -> bytes:
    """Keccak over the value words only (no addresses)."""
    return _hash_words(values)


def page_fact_hash(page_type: PageType, page_hash: bytes, product: int, size: int) -> bytes:
    """fact = Keccak(TYPE ‖ page_hash ‖ product ‖ size)"""
    h = Keccak256(tag_bytes(page_type))
    h.update(to_word(page_hash))
    h.update(to_word(product))
    h.update(to_word(size))
    return h.digest()


def _require_prime(prime: int) -> None:
    if prime != STARK_PRIME:
        raise ValidationError(f"Unsupported modulus: {prime:#x}")


def _validate_regular(pairs: Sequence[FieldLike], prime: int) -> List[int]:
    if len(pairs) == 0:
        raise ValidationError("Regular page is empty")
    if len(pairs) % 2 != 0:
        raise ValidationError(
            f"Regular page must hold (address, value) pairs, got {len(pairs)} elements"
        )
    return require_canonical(pairs, 'memory_pairs', prime)


def _validate_continuous(
    start_address: FieldLike,
    values: Sequence[FieldLike],
    prime: int
) -> Tuple[int, List[int]]:
    start = require_canonical_scalar(start_address, 'start_address', prime)
    if len(values) == 0:
        raise ValidationError("Continuous page is empty")
    checked = require_canonical(values, 'values', prime)
    if start + len(checked) - 1 >= prime:
        raise ValidationError(
            f"Continuous page of {len(checked)} values at {start:#x} runs past the modulus"
        )
    return start, checked


# =============================================================================
# PAGE RECORDS
# =============================================================================

@dataclass(frozen=True)
class PageInfo:
    """What the aggregator needs to know about a committed page."""
    product: int
    size: int


@dataclass(frozen=True)
class PageCommitment:
    """
    A validated page: hashed and folded, not yet registered.

    Fields:
    - page_type: REGULAR or CONTINUOUS
    - page_hash: Keccak of the page words
    - product: Cumulative product under (z, alpha)
    - size: Number of (address, value) entries
    - fact: Digest to register into the fact store
    - start_address: First address (continuous pages only)
    """
    page_type: PageType
    page_hash: bytes
    product: int
    size: int
    fact: bytes
    start_address: Optional[int] = None

    @property
    def info(self) -> PageInfo:
        return PageInfo(product=self.product, size=self.size)


@dataclass(frozen=True)
class MemoryPageFact(PageCommitment):
    """A committed memory page; index is its sequential registration slot."""
    index: int = 0


def prepare_regular_page(
    memory_pairs: Sequence[FieldLike],
    z: FieldLike,
    alpha: FieldLike,
    prime: int = STARK_PRIME
) -> PageCommitment:
    """
    Validate, hash and fold a regular page of interleaved (address, value) pairs.

    Raises:
        ValidationError: empty or odd-length input, or any element,
            z or alpha not below the modulus
    """
    _require_prime(prime)
    pairs = _validate_regular(memory_pairs, prime)
    z = require_canonical_scalar(z, 'z', prime)
    alpha = require_canonical_scalar(alpha, 'alpha', prime)

    entries = list(zip(pairs[0::2], pairs[1::2]))
    product = cumulative_product(entries, z, alpha)
    page_hash = regular_page_hash(pairs)

    return PageCommitment(
        page_type=PageType.REGULAR,
        page_hash=page_hash,
        product=product,
        size=len(entries),
        fact=page_fact_hash(PageType.REGULAR, page_hash, product, len(entries)),
    )


def prepare_continuous_page(
    start_address: FieldLike,
    values: Sequence[FieldLike],
    z: FieldLike,
    alpha: FieldLike,
    prime: int = STARK_PRIME
) -> PageCommitment:
    """
    Validate, hash and fold a continuous page: values[i] lives at start_address + i.

    Raises:
        ValidationError: empty input, or any value, the address range,
            z or alpha not below the modulus
    """
    _require_prime(prime)
    start, vals = _validate_continuous(start_address, values, prime)
    z = require_canonical_scalar(z, 'z', prime)
    alpha = require_canonical_scalar(alpha, 'alpha', prime)

    product = cumulative_product(((start + i, v) for i, v in enumerate(vals)), z, alpha)
    page_hash = continuous_page_hash(vals)

    return PageCommitment(
        page_type=PageType.CONTINUOUS,
        page_hash=page_hash,
        product=product,
        size=len(vals),
        fact=page_fact_hash(PageType.CONTINUOUS, page_hash, product, len(vals)),
        start_address=start,
    )


def compute_regular_page_fact(
    memory_pairs: Sequence[FieldLike],
    z: FieldLike,
    alpha: FieldLike
) -> bytes:
    """Fact a regular page would register, without registering it."""
    return prepare_regular_page(memory_pairs, z, alpha).fact


def compute_continuous_page_fact(
    start_address: FieldLike,
    values: Sequence[FieldLike],
    z: FieldLike,
    alpha: FieldLike
) -> bytes:
    """Fact a continuous page would register, without registering it."""
    return prepare_continuous_page(start_address, values, z, alpha).fact


SlotKey = Tuple[bytes, Optional[int]]


class MemoryPageFactRegistry:
    """
    Registers memory-page facts and keeps page metadata for aggregation.

    A page slot is (page_hash, start_address), with start_address None for
    regular pages. Re-registering an identical page returns the stored
    record and changes nothing.
    """

    def __init__(
        self,
        fact_store: Optional[FactStore] = None,
        events: Optional[EventLog] = None
    ):
        self.fact_store = fact_store if fact_store is not None else FactRegistry()
        self.events = events if events is not None else EventLog()
        self._pages: List[MemoryPageFact] = []
        self._slots: Dict[SlotKey, List[MemoryPageFact]] = {}
        self._known: Dict[Tuple[bytes, Optional[int], bytes], MemoryPageFact] = {}

    # =========================================================================
    # Registration
    # =========================================================================

    def register_regular_page(
        self,
        memory_pairs: Sequence[FieldLike],
        z: FieldLike,
        alpha: FieldLike,
        prime: int = STARK_PRIME
    ) -> MemoryPageFact:
        """
        Commit a regular page of interleaved (address, value) pairs.

        Raises:
            ValidationError: see prepare_regular_page
        """
        return self.commit(prepare_regular_page(memory_pairs, z, alpha, prime))

    def register_continuous_page(
        self,
        start_address: FieldLike,
        values: Sequence[FieldLike],
        z: FieldLike,
        alpha: FieldLike,
        prime: int = STARK_PRIME
    ) -> MemoryPageFact:
        """
        Commit a continuous page: values[i] lives at start_address + i.

        Raises:
            ValidationError: see prepare_continuous_page
        """
        return self.commit(prepare_continuous_page(start_address, values, z, alpha, prime))

    def commit(self, page: PageCommitment) -> MemoryPageFact:
        """Register an already validated page."""
        key = (page.page_hash, page.start_address, page.fact)
        known = self._known.get(key)
        if known is not None:
            logger.debug("Page %s already registered at index %d", page.page_hash.hex(), known.index)
            return known

        record = MemoryPageFact(
            page_type=page.page_type,
            page_hash=page.page_hash,
            product=page.product,
            size=page.size,
            fact=page.fact,
            start_address=page.start_address,
            index=len(self._pages),
        )

        self.fact_store.register_fact(record.fact)
        self._pages.append(record)
        self._slots.setdefault((record.page_hash, record.start_address), []).append(record)
        self._known[key] = record

        self.events.emit(MemoryPageRegistered(
            index=record.index,
            page_hash=record.page_hash,
            product=record.product,
            size=record.size,
            fact=record.fact,
        ))
        logger.info(
            "Registered %s page %d: hash=%s product=%#x size=%d",
            record.page_type.name.lower(), record.index, record.page_hash.hex(),
            record.product, record.size
        )
        return record

    def commit_all(self, pages: Sequence[PageCommitment]) -> List[MemoryPageFact]:
        """Register a batch of validated pages in order."""
        return [self.commit(page) for page in pages]

    # =========================================================================
    # Queries
    # =========================================================================

    def lookup(
        self,
        page_hash: bytes,
        start_address: Optional[int] = None,
        product: Optional[int] = None
    ) -> MemoryPageFact:
        """
        Find the committed record for a page slot.

        When several records share the slot (same page committed under
        different challenges) the earliest wins unless product selects one.

        Raises:
            NotFoundError: no matching page was registered
        """
        candidates = self._slots.get((bytes(page_hash), start_address), [])
        if product is not None:
            candidates = [c for c in candidates if c.product == product]
        if not candidates:
            where = '' if start_address is None else f" at {start_address:#x}"
            raise NotFoundError(f"Unknown memory page {bytes(page_hash).hex()}{where}")
        return candidates[0]

    def page_info(
        self,
        page_hash: bytes,
        start_address: Optional[int] = None,
        product: Optional[int] = None
    ) -> PageInfo:
        """(product, size) of a committed page; NotFoundError if unknown."""
        return self.lookup(page_hash, start_address, product).info

    def page_at(self, index: int) -> MemoryPageFact:
        """Record registered with the given sequential index."""
        if index < 0 or index >= len(self._pages):
            raise NotFoundError(f"No memory page with index {index}")
        return self._pages[index]

    def pages(self) -> List[MemoryPageFact]:
        """All records in index order."""
        return list(self._pages)

    def is_valid(self, fact: bytes) -> bool:
        return self.fact_store.is_valid(fact)

    def __len__(self) -> int:
        return len(self._pages)
