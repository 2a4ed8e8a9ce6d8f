"""
factregistry: Fact Registry and Memory-Page Commitments for STARK Proofs

A trust anchor for Cairo-style STARK verification:
- Fact stores: append-only sets of 32-byte facts, optionally delegating
  to a secondary store for a fixed period
- Memory pages: program-memory slices committed as a Keccak page hash
  plus a Fiat-Shamir cumulative product, registered as facts
- Statements: per-task facts folded under the bootloader identity into
  one registered fact

Usage:
    from factregistry import (
        FactRegistry, MemoryPageFactRegistry, StatementAggregator, TaskDescriptor
    )

    facts = FactRegistry()
    pages = MemoryPageFactRegistry(facts)
    page = pages.register_continuous_page(start, values, z, alpha)

    aggregator = StatementAggregator(pages, params=params)
    result = aggregator.aggregate(
        [TaskDescriptor(program_hash, (page.size,))], [page], params.bootloader_program_hash
    )
    assert facts.is_valid(result.aggregate_fact)
"""

# Errors
from .errors import (
    FactRegistryError,
    ValidationError,
    LayoutError,
    NotFoundError,
    ConfigError,
    UnsupportedVerifierError,
    IdentityMismatchError,
)

# Field and hashing
from .field import STARK_PRIME, FieldElement
from .keccak import keccak256, keccak_words, to_word
from .tags import PageType

# Parameters
from .params import RegistryParams, PARAMS_DEFAULT, PARAMS_TESTING, DEFAULT_VERIFIER_ID

# Fact stores
from .registry import (
    Fact,
    FactStore,
    FactRegistry,
    DelegatingFactRegistry,
    negotiate_capability,
)

# Events
from .events import EventLog, MemoryPageRegistered, StatementRegistered

# Memory pages
from .memory_pages import (
    MemoryPageFact,
    PageCommitment,
    MemoryPageFactRegistry,
    PageInfo,
    cumulative_product,
    regular_page_hash,
    continuous_page_hash,
    page_fact_hash,
    compute_regular_page_fact,
    compute_continuous_page_fact,
    prepare_regular_page,
    prepare_continuous_page,
)

# Statements
from .statement import (
    TaskDescriptor,
    PageReference,
    AggregationResult,
    StatementAggregator,
    compute_task_fact,
    fold_statement,
    parse_task_metadata,
    encode_task_metadata,
    page_section_length,
    encode_page_section,
    parse_page_section,
)

# Bundles
from .bundle import (
    ProofBundle,
    ContinuousPage,
    MemoryCell,
    BundleOutcome,
    split_public_memory,
    prepare_bundle_pages,
    check_page_references,
    register_bundle_pages,
    process_bundle,
)

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Errors
    "FactRegistryError",
    "ValidationError",
    "LayoutError",
    "NotFoundError",
    "ConfigError",
    "UnsupportedVerifierError",
    "IdentityMismatchError",
    # Field and hashing
    "STARK_PRIME",
    "FieldElement",
    "keccak256",
    "keccak_words",
    "to_word",
    "PageType",
    # Parameters
    "RegistryParams",
    "PARAMS_DEFAULT",
    "PARAMS_TESTING",
    "DEFAULT_VERIFIER_ID",
    # Fact stores
    "Fact",
    "FactStore",
    "FactRegistry",
    "DelegatingFactRegistry",
    "negotiate_capability",
    # Events
    "EventLog",
    "MemoryPageRegistered",
    "StatementRegistered",
    # Memory pages
    "MemoryPageFact",
    "PageCommitment",
    "MemoryPageFactRegistry",
    "PageInfo",
    "cumulative_product",
    "regular_page_hash",
    "continuous_page_hash",
    "page_fact_hash",
    "compute_regular_page_fact",
    "compute_continuous_page_fact",
    "prepare_regular_page",
    "prepare_continuous_page",
    # Statements
    "TaskDescriptor",
    "PageReference",
    "AggregationResult",
    "StatementAggregator",
    "compute_task_fact",
    "fold_statement",
    "parse_task_metadata",
    "encode_task_metadata",
    "page_section_length",
    "encode_page_section",
    "parse_page_section",
    # Bundles
    "ProofBundle",
    "ContinuousPage",
    "MemoryCell",
    "BundleOutcome",
    "split_public_memory",
    "prepare_bundle_pages",
    "check_page_references",
    "register_bundle_pages",
    "process_bundle",
]
