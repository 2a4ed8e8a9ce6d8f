"""
Proof Bundles

The upstream pipeline hands over one JSON document per proof:

    {
        "proof_params": [...], "proof": [...], "public_input": [...],
        "z": "0x..", "alpha": "0x..",
        "task_metadata": [...],
        "memory_page_facts": {
            "regular_page": {"memory_pairs": [...]},
            "continuous_pages": [{"start_addr": "0x..", "values": [...]}, ...]
        }
    }

Integers are 0x-prefixed hex strings, decimal strings or plain ints.
The page lists are explicit, so the number of pages is always known up
front; the public input ends with a memory-page section naming the same
pages (see parse_page_section).
"""

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
import json
import logging

from .errors import LayoutError, ValidationError
from .memory_pages import (
    MemoryPageFact,
    MemoryPageFactRegistry,
    PageCommitment,
    PageInfo,
    prepare_continuous_page,
    prepare_regular_page,
)
from .statement import (
    AggregationResult,
    PageReference,
    StatementAggregator,
    page_section_length,
    parse_page_section,
    parse_task_metadata,
)


logger = logging.getLogger(__name__)


def parse_int(value: Any, name: str) -> int:
    """Decode an int given as int, hex string or decimal string."""
    if isinstance(value, bool):
        raise ValidationError(f"{name}: expected integer, got bool")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            if text.lower().startswith('0x'):
                return int(text, 16)
            return int(text, 10)
        except ValueError:
            raise ValidationError(f"{name}: not an integer: {value!r}") from None
    raise ValidationError(f"{name}: expected integer, got {type(value).__name__}")


def parse_int_list(values: Any, name: str) -> List[int]:
    if not isinstance(values, (list, tuple)):
        raise ValidationError(f"{name}: expected a list, got {type(values).__name__}")
    return [parse_int(v, f"{name}[{i}]") for i, v in enumerate(values)]


@dataclass(frozen=True)
class ContinuousPage:
    """Dense value run starting at start_address."""
    start_address: int
    values: Tuple[int, ...]

    def __post_init__(self):
        object.__setattr__(self, 'values', tuple(self.values))


@dataclass
class ProofBundle:
    """Decoded proof bundle: every field is a field-element sequence."""
    z: int
    alpha: int
    regular_page: Optional[List[int]] = None
    continuous_pages: List[ContinuousPage] = field(default_factory=list)
    proof_params: List[int] = field(default_factory=list)
    proof: List[int] = field(default_factory=list)
    public_input: List[int] = field(default_factory=list)
    task_metadata: List[int] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'ProofBundle':
        """
        Decode a bundle mapping.

        Page data is read from data["memory_page_facts"] when present,
        otherwise from the top level.
        """
        if not isinstance(data, Mapping):
            raise ValidationError("Bundle must be a JSON object")
        for key in ('z', 'alpha'):
            if key not in data:
                raise ValidationError(f"Bundle is missing {key!r}")

        facts = data.get('memory_page_facts', data)
        if not isinstance(facts, Mapping):
            raise ValidationError("memory_page_facts must be a JSON object")

        regular = facts.get('regular_page')
        regular_pairs = None
        if regular is not None:
            if isinstance(regular, Mapping):
                regular = regular.get('memory_pairs', [])
            regular_pairs = parse_int_list(regular, 'regular_page.memory_pairs')

        continuous = []
        raw_pages = facts.get('continuous_pages', [])
        if not isinstance(raw_pages, (list, tuple)):
            raise ValidationError("continuous_pages must be a list")
        for i, page in enumerate(raw_pages):
            if not isinstance(page, Mapping) or 'start_addr' not in page:
                raise ValidationError(f"continuous_pages[{i}] needs start_addr and values")
            continuous.append(ContinuousPage(
                start_address=parse_int(page['start_addr'], f"continuous_pages[{i}].start_addr"),
                values=parse_int_list(page.get('values', []), f"continuous_pages[{i}].values"),
            ))

        return cls(
            z=parse_int(data['z'], 'z'),
            alpha=parse_int(data['alpha'], 'alpha'),
            regular_page=regular_pairs,
            continuous_pages=continuous,
            proof_params=parse_int_list(data.get('proof_params', []), 'proof_params'),
            proof=parse_int_list(data.get('proof', []), 'proof'),
            public_input=parse_int_list(data.get('public_input', []), 'public_input'),
            task_metadata=parse_int_list(data.get('task_metadata', []), 'task_metadata'),
        )

    @classmethod
    def from_json(cls, source: Union[str, Path]) -> 'ProofBundle':
        """Load from a JSON file path or a JSON text."""
        if isinstance(source, str) and source.lstrip()[:1] in ('{', '['):
            text = source
        else:
            try:
                text = Path(source).read_text(encoding='utf-8')
            except OSError as e:
                raise ValidationError(f"Cannot read bundle {source}: {e}") from e
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Bundle is not valid JSON: {e}") from e
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        """Encode with 0x-prefixed hex strings."""
        def hexes(values):
            return [hex(v) for v in values]

        facts: Dict[str, Any] = {
            'regular_page': (
                {'memory_pairs': hexes(self.regular_page)}
                if self.regular_page is not None else None
            ),
            'continuous_pages': [
                {'start_addr': hex(p.start_address), 'values': hexes(p.values)}
                for p in self.continuous_pages
            ],
        }
        return {
            'proof_params': hexes(self.proof_params),
            'proof': hexes(self.proof),
            'public_input': hexes(self.public_input),
            'z': hex(self.z),
            'alpha': hex(self.alpha),
            'task_metadata': hexes(self.task_metadata),
            'memory_page_facts': facts,
        }

    @property
    def page_count(self) -> int:
        return (1 if self.regular_page is not None else 0) + len(self.continuous_pages)

    def page_references(self) -> List[PageReference]:
        """
        Pages named by the memory-page section that ends the public input.

        The section length follows from the bundle's own page count; the
        page count word inside the section must agree with it.

        Raises:
            LayoutError: public input too short or section malformed
        """
        has_regular = self.regular_page is not None
        length = page_section_length(self.page_count, has_regular)
        if len(self.public_input) < length:
            raise LayoutError(
                f"Public input holds {len(self.public_input)} words, "
                f"memory-page section for {self.page_count} pages needs {length}"
            )
        _, refs = parse_page_section(self.public_input[len(self.public_input) - length:], has_regular)
        return refs

    def cairo_aux_input(self) -> List[int]:
        """Public input followed by the interaction elements z, alpha."""
        return list(self.public_input) + [self.z, self.alpha]


# =============================================================================
# PUBLIC MEMORY SPLITTING
# =============================================================================

@dataclass(frozen=True)
class MemoryCell:
    """One public-memory cell as exported by the prover."""
    page: int
    address: int
    value: int

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'MemoryCell':
        # Addresses are exported in decimal, values in hex
        missing = [k for k in ('page', 'address', 'value') if k not in data]
        if missing:
            raise ValidationError(f"Memory cell is missing {', '.join(missing)}")
        value = data['value']
        if isinstance(value, str) and not value.lower().startswith('0x'):
            value = '0x' + value
        return cls(
            page=parse_int(data['page'], 'page'),
            address=parse_int(data['address'], 'address'),
            value=parse_int(value, 'value'),
        )


def split_public_memory(
    cells: Iterable[Union[MemoryCell, Mapping[str, Any]]]
) -> Tuple[Optional[List[int]], List[ContinuousPage]]:
    """
    Group public-memory cells into pages.

    Page 0 becomes the regular page (interleaved pairs, cell order kept).
    Every other page, in ascending page id, becomes a continuous page
    spanning [min address, max address], with unwritten addresses set to 0.

    Returns:
        (regular_pairs or None, continuous_pages)
    """
    grouped: Dict[int, List[MemoryCell]] = {}
    for cell in cells:
        if not isinstance(cell, MemoryCell):
            cell = MemoryCell.from_dict(cell)
        grouped.setdefault(cell.page, []).append(cell)

    regular = None
    if 0 in grouped:
        regular = []
        for cell in grouped.pop(0):
            regular.extend([cell.address, cell.value])

    continuous = []
    for page_id in sorted(grouped):
        page_cells = grouped[page_id]
        start = min(c.address for c in page_cells)
        end = max(c.address for c in page_cells)
        values = [0] * (end - start + 1)
        for c in page_cells:
            values[c.address - start] = c.value
        continuous.append(ContinuousPage(start_address=start, values=values))

    return regular, continuous


# =============================================================================
# REGISTRATION FLOW
# =============================================================================

def prepare_bundle_pages(bundle: ProofBundle) -> List[PageCommitment]:
    """
    Validate, hash and fold every page of the bundle without registering.

    Order: the regular page, then each continuous page.
    """
    prepared = []
    if bundle.regular_page is not None:
        prepared.append(prepare_regular_page(bundle.regular_page, bundle.z, bundle.alpha))
    for page in bundle.continuous_pages:
        prepared.append(prepare_continuous_page(
            page.start_address, page.values, bundle.z, bundle.alpha
        ))
    return prepared


def register_bundle_pages(
    registry: MemoryPageFactRegistry,
    bundle: ProofBundle
) -> List[MemoryPageFact]:
    """
    Register the regular page, then every continuous page, in order.

    Every page is validated before the first one is committed.

    Returns:
        Committed records in registration order
    """
    registered = registry.commit_all(prepare_bundle_pages(bundle))
    logger.debug("Registered %d pages from bundle", len(registered))
    return registered


def check_page_references(
    refs: Sequence[PageReference],
    pages: Sequence[PageCommitment]
) -> None:
    """
    Require the public input's pages to match the bundle's page data.

    Raises:
        LayoutError: page count or any hash, start address, size or
            product differs
    """
    if len(refs) != len(pages):
        raise LayoutError(
            f"Public input names {len(refs)} pages, bundle carries {len(pages)}"
        )
    for i, (ref, page) in enumerate(zip(refs, pages)):
        for name in ('page_hash', 'start_address', 'size', 'product'):
            claimed, actual = getattr(ref, name), getattr(page, name)
            if claimed != actual:
                raise LayoutError(
                    f"Public input page {i} {name} {claimed!r} != committed {actual!r}"
                )


ProofVerifier = Callable[[ProofBundle], bool]


@dataclass
class BundleOutcome:
    """Result of processing one bundle end to end."""
    pages: List[MemoryPageFact]
    aggregation: AggregationResult
    proof_verified: Optional[bool] = None
    registered: bool = False

    @property
    def verified(self) -> bool:
        """True only when the external verifier accepted the proof."""
        return self.proof_verified is True


def process_bundle(
    bundle: ProofBundle,
    aggregator: StatementAggregator,
    bootloader_program_hash: int,
    proof_verifier: Optional[ProofVerifier] = None
) -> BundleOutcome:
    """
    Check a bundle, consult the verifier, then register its pages and statement.

    Tasks own the continuous pages named by the public input; the regular
    page holds the bootloader's own memory and is committed but not
    assigned to a task.

    Nothing is registered unless every check passes and the verifier (when
    given) accepts the proof. A rejected proof yields an outcome with the
    evaluated statement and registered=False.

    Raises:
        ValidationError: malformed page data
        LayoutError: task metadata or public input inconsistent with the pages
        plus every error StatementAggregator.evaluate raises
    """
    tasks = parse_task_metadata(bundle.task_metadata)
    refs = bundle.page_references()
    prepared = prepare_bundle_pages(bundle)
    check_page_references(refs, prepared)

    task_pages = [ref for ref in refs if ref.start_address is not None]
    aggregation = aggregator.evaluate(
        tasks,
        [PageInfo(product=ref.product, size=ref.size) for ref in task_pages],
        bootloader_program_hash,
    )

    proof_verified = None
    if proof_verifier is not None:
        proof_verified = bool(proof_verifier(bundle))
        if not proof_verified:
            logger.warning(
                "Proof verifier rejected bundle; statement %s not registered",
                aggregation.aggregate_fact.hex()
            )
            return BundleOutcome(pages=[], aggregation=aggregation, proof_verified=False)

    pages = aggregator.pages.commit_all(prepared)
    aggregator.register(aggregation)
    return BundleOutcome(
        pages=pages,
        aggregation=aggregation,
        proof_verified=proof_verified,
        registered=True,
    )
