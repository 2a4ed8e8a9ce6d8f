"""
Statement Aggregation

Folds the pages of many sub-programs ("tasks") run under one
orchestrating program (the bootloader) into a single fact:

    task_fact_i = Keccak(program_i ‖ n_pages ‖ size_0 ‖ product_0 ‖ ...)
    acc_0       = bootloader identity (one word)
    acc_{i+1}   = Keccak(acc_i ‖ task_fact_i)
    statement   = acc_n

Pages are assigned to tasks positionally: task i owns the next
len(page_sizes_i) page references. The aggregator reads only committed
page data; the soundness of the execution trace itself is attested by
an external proof verifier.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union
import logging

from .errors import (
    IdentityMismatchError,
    LayoutError,
    NotFoundError,
    UnsupportedVerifierError,
    ValidationError,
)
from .events import EventLog, StatementRegistered
from .field import STARK_PRIME, is_canonical
from .keccak import Keccak256, keccak_words, to_word, word_to_int
from .memory_pages import MemoryPageFact, MemoryPageFactRegistry, PageCommitment, PageInfo
from .params import PARAMS_DEFAULT, RegistryParams
from .registry import FactStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskDescriptor:
    """
    One sub-program of a batch.

    Fields:
    - program_hash: Identity of the task's program
    - page_sizes: Entry count of each page the task owns, in order
    - verifier_id: Sub-verifier that checks this task (params default if None)
    """
    program_hash: int
    page_sizes: Tuple[int, ...]
    verifier_id: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, 'page_sizes', tuple(self.page_sizes))

    @property
    def total_size(self) -> int:
        return sum(self.page_sizes)


@dataclass(frozen=True)
class PageReference:
    """
    A page as named by the public input.

    Optional fields are claims; each one given must agree with the
    registered page.
    """
    page_hash: bytes
    start_address: Optional[int] = None
    size: Optional[int] = None
    product: Optional[int] = None

    @classmethod
    def of(cls, page: PageCommitment) -> 'PageReference':
        """Reference naming exactly the given committed page."""
        return cls(
            page_hash=page.page_hash,
            start_address=page.start_address,
            size=page.size,
            product=page.product,
        )


PageRef = Union[bytes, PageReference, MemoryPageFact]


@dataclass
class AggregationResult:
    """Outcome of a successful aggregation."""
    aggregate_fact: bytes
    task_facts: List[bytes] = field(default_factory=list)

    @property
    def task_count(self) -> int:
        return len(self.task_facts)


# =============================================================================
# PURE COMPUTATION
# =============================================================================

def compute_task_fact(program_hash: int, pages: Sequence[PageInfo]) -> bytes:
    """task_fact = Keccak(program ‖ n_pages ‖ size_0 ‖ product_0 ‖ ...)"""
    h = Keccak256(to_word(program_hash))
    h.update(to_word(len(pages)))
    for page in pages:
        h.update(to_word(page.size))
        h.update(to_word(page.product))
    return h.digest()


def fold_statement(bootloader_program_hash: int, task_facts: Sequence[bytes]) -> bytes:
    """Chain task facts, in order, onto the bootloader identity."""
    if not task_facts:
        raise ValidationError("Cannot fold an empty task list")
    acc = to_word(bootloader_program_hash)
    for fact in task_facts:
        acc = keccak_words(acc, fact)
    return acc


# =============================================================================
# TASK METADATA WIRE FORMAT
# =============================================================================

def parse_task_metadata(words: Sequence[int]) -> List[TaskDescriptor]:
    """
    Decode [n_tasks, (program, verifier_id, n_pages, size...)*].

    Raises:
        LayoutError: truncated or trailing data, negative counts
    """
    words = list(words)
    if not words:
        raise LayoutError("Task metadata is empty")

    n_tasks = words[0]
    offset = 1
    tasks = []

    for i in range(n_tasks):
        if offset + 3 > len(words):
            raise LayoutError(f"Task metadata truncated in header of task {i}")
        program_hash, verifier_id, n_pages = words[offset:offset+3]
        offset += 3

        if n_pages < 0 or offset + n_pages > len(words):
            raise LayoutError(f"Task metadata truncated in page sizes of task {i}")
        sizes = tuple(words[offset:offset+n_pages])
        offset += n_pages

        tasks.append(TaskDescriptor(
            program_hash=program_hash,
            page_sizes=sizes,
            verifier_id=verifier_id,
        ))

    if offset != len(words):
        raise LayoutError(
            f"Task metadata has {len(words) - offset} trailing words after {n_tasks} tasks"
        )
    return tasks


def encode_task_metadata(
    tasks: Sequence[TaskDescriptor],
    default_verifier_id: int = PARAMS_DEFAULT.default_verifier_id
) -> List[int]:
    """Inverse of parse_task_metadata."""
    words = [len(tasks)]
    for task in tasks:
        verifier_id = task.verifier_id if task.verifier_id is not None else default_verifier_id
        words.extend([task.program_hash, verifier_id, len(task.page_sizes)])
        words.extend(task.page_sizes)
    return words


# =============================================================================
# PUBLIC INPUT: MEMORY-PAGE SECTION
# =============================================================================

def page_section_length(n_pages: int, has_regular_page: bool = True) -> int:
    """
    Word count of a memory-page section holding n_pages pages.

    Layout:
        padding_address, padding_value, n_pages,
        per page: [start_address (continuous only)], size, page_hash
        then one product per page
    """
    n_regular = 1 if has_regular_page and n_pages > 0 else 0
    return 3 + 2 * n_regular + 3 * (n_pages - n_regular) + n_pages


def encode_page_section(
    pages: Sequence[PageReference],
    padding: Tuple[int, int] = (0, 0)
) -> List[int]:
    """
    Encode page references as the public input's memory-page section.

    Only the first page may be regular (no start address). Every page
    must carry its size and product.
    """
    words = [padding[0], padding[1], len(pages)]
    for i, page in enumerate(pages):
        if page.size is None or page.product is None:
            raise LayoutError(f"Page {i} needs a size and a product to be encoded")
        if page.start_address is not None:
            words.append(page.start_address)
        elif i != 0:
            raise LayoutError(f"Page {i} has no start address; only page 0 may be regular")
        words.extend([page.size, word_to_int(to_word(page.page_hash))])
    words.extend(page.product for page in pages)
    return words


def parse_page_section(
    words: Sequence[int],
    has_regular_page: bool = True
) -> Tuple[Tuple[int, int], List[PageReference]]:
    """
    Decode a memory-page section into (padding, page references).

    Each reference carries the page hash, start address, size and product
    the proof was generated over, so the aggregator checks them against
    the committed pages.

    Raises:
        LayoutError: truncated or trailing data, or a negative page count
    """
    words = list(words)
    if len(words) < 3:
        raise LayoutError("Memory-page section is truncated before the page count")

    padding = (words[0], words[1])
    n_pages = words[2]
    if n_pages < 0:
        raise LayoutError(f"Memory-page section declares {n_pages} pages")
    expected = page_section_length(n_pages, has_regular_page)
    if len(words) != expected:
        raise LayoutError(
            f"Memory-page section for {n_pages} pages needs {expected} words, got {len(words)}"
        )

    offset = 3
    headers = []
    for i in range(n_pages):
        start_address = None
        if not (has_regular_page and i == 0):
            start_address = words[offset]
            offset += 1
        size, page_hash = words[offset:offset+2]
        offset += 2
        headers.append((start_address, size, page_hash))

    products = words[offset:]
    pages = [
        PageReference(
            page_hash=to_word(page_hash),
            start_address=start_address,
            size=size,
            product=product,
        )
        for (start_address, size, page_hash), product in zip(headers, products)
    ]
    return padding, pages


# =============================================================================
# AGGREGATOR
# =============================================================================

class StatementAggregator:
    """
    Derives and registers one statement fact per batch.

    Stateless apart from the stores it writes to: each successful call
    registers exactly one fact; a failing call registers nothing.
    """

    def __init__(
        self,
        pages: MemoryPageFactRegistry,
        fact_store: Optional[FactStore] = None,
        params: RegistryParams = PARAMS_DEFAULT,
        events: Optional[EventLog] = None
    ):
        self.pages = pages
        self.fact_store = fact_store if fact_store is not None else pages.fact_store
        self.params = params
        self.events = events if events is not None else pages.events

    def aggregate(
        self,
        tasks: Sequence[TaskDescriptor],
        page_refs: Sequence[PageRef],
        bootloader_program_hash: int
    ) -> AggregationResult:
        """
        Register the statement fact for a batch of tasks.

        Args:
            tasks: Task descriptors in batch order
            page_refs: Pages named by the public input, in task order
            bootloader_program_hash: Declared orchestrating program identity

        Raises:
            IdentityMismatchError: identity differs from params
            ValidationError: empty task list, non-canonical program hash
            UnsupportedVerifierError: a task names an unknown verifier id
            NotFoundError: a referenced page was never registered
            LayoutError: page sizes or claims disagree with committed pages
        """
        tasks = self._check_batch(tasks, bootloader_program_hash)
        infos = [self._resolve(i, ref) for i, ref in enumerate(page_refs)]
        result = self._fold(tasks, infos, bootloader_program_hash)
        self.register(result)
        return result

    def evaluate(
        self,
        tasks: Sequence[TaskDescriptor],
        infos: Sequence[PageInfo],
        bootloader_program_hash: int
    ) -> AggregationResult:
        """
        Check a batch against page data and fold it, registering nothing.

        Same checks as aggregate(), except that pages are given directly
        instead of being looked up among committed pages.
        """
        tasks = self._check_batch(tasks, bootloader_program_hash)
        return self._fold(tasks, list(infos), bootloader_program_hash)

    def register(self, result: AggregationResult) -> None:
        """Register an evaluated statement fact."""
        self.fact_store.register_fact(result.aggregate_fact)
        self.events.emit(StatementRegistered(
            aggregate_fact=result.aggregate_fact,
            task_count=result.task_count,
        ))
        logger.info(
            "Registered statement %s for %d tasks",
            result.aggregate_fact.hex(), result.task_count
        )

    def is_valid(self, fact: bytes) -> bool:
        return self.fact_store.is_valid(fact)

    # =========================================================================
    # Checks
    # =========================================================================

    def _check_batch(
        self,
        tasks: Sequence[TaskDescriptor],
        bootloader_program_hash: int
    ) -> List[TaskDescriptor]:
        self._check_identity(bootloader_program_hash)
        tasks = list(tasks)
        if not tasks:
            raise ValidationError("Statement needs at least one task")
        for i, task in enumerate(tasks):
            self._check_task(i, task)
        return tasks

    def _fold(
        self,
        tasks: List[TaskDescriptor],
        infos: List[PageInfo],
        bootloader_program_hash: int
    ) -> AggregationResult:
        declared = sum(task.total_size for task in tasks)
        available = sum(info.size for info in infos)
        if declared != available:
            raise LayoutError(
                f"Tasks declare {declared} memory entries but referenced pages hold {available}"
            )

        task_facts = []
        cursor = 0
        for i, task in enumerate(tasks):
            owned = infos[cursor:cursor + len(task.page_sizes)]
            if len(owned) != len(task.page_sizes):
                raise LayoutError(
                    f"Task {i} declares {len(task.page_sizes)} pages, "
                    f"only {len(owned)} remain"
                )
            for j, (declared_size, info) in enumerate(zip(task.page_sizes, owned)):
                if declared_size != info.size:
                    raise LayoutError(
                        f"Task {i} page {j}: declared size {declared_size}, "
                        f"committed size {info.size}"
                    )
            cursor += len(owned)
            task_facts.append(compute_task_fact(task.program_hash, owned))

        if cursor != len(infos):
            raise LayoutError(f"{len(infos) - cursor} referenced pages belong to no task")

        aggregate_fact = fold_statement(bootloader_program_hash, task_facts)
        return AggregationResult(aggregate_fact=aggregate_fact, task_facts=task_facts)

    def _check_identity(self, bootloader_program_hash: int) -> None:
        expected = self.params.bootloader_program_hash
        if bootloader_program_hash != expected:
            raise IdentityMismatchError(
                f"Bootloader identity {bootloader_program_hash!r} != expected {expected:#x}"
            )

    def _check_task(self, i: int, task: TaskDescriptor) -> None:
        if not is_canonical(task.program_hash, STARK_PRIME):
            raise ValidationError(
                f"Task {i} program hash is not a field element: {task.program_hash!r}"
            )
        verifier_id = (
            task.verifier_id if task.verifier_id is not None
            else self.params.default_verifier_id
        )
        if verifier_id not in self.params.supported_verifier_ids:
            raise UnsupportedVerifierError(f"Task {i} names unsupported verifier {verifier_id}")
        if not task.page_sizes:
            raise LayoutError(f"Task {i} owns no pages")
        for j, size in enumerate(task.page_sizes):
            if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
                raise LayoutError(f"Task {i} page {j} has invalid size {size!r}")

    def _resolve(self, i: int, ref: PageRef) -> PageInfo:
        if isinstance(ref, MemoryPageFact):
            ref = PageReference.of(ref)
        elif isinstance(ref, (bytes, bytearray)):
            ref = PageReference(page_hash=bytes(ref))

        try:
            record = self.pages.lookup(ref.page_hash, ref.start_address, ref.product)
        except NotFoundError:
            if ref.product is None:
                raise
            committed = self.pages.lookup(ref.page_hash, ref.start_address)
            raise LayoutError(
                f"Page reference {i} claims product {ref.product:#x}, "
                f"committed product {committed.product:#x}"
            ) from None
        if ref.size is not None and ref.size != record.size:
            raise LayoutError(
                f"Page reference {i} claims size {ref.size}, committed size {record.size}"
            )
        return record.info
