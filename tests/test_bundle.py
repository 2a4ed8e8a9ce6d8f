"""
Tests for Proof Bundle Decoding and Processing
"""

import json
import logging

import pytest

from factregistry import (
    PARAMS_TESTING,
    ContinuousPage,
    FactRegistry,
    LayoutError,
    MemoryCell,
    MemoryPageFactRegistry,
    PageReference,
    ProofBundle,
    StatementAggregator,
    ValidationError,
    compute_continuous_page_fact,
    compute_regular_page_fact,
    compute_task_fact,
    continuous_page_hash,
    cumulative_product,
    encode_page_section,
    fold_statement,
    process_bundle,
    register_bundle_pages,
    regular_page_hash,
    split_public_memory,
)


BOOT = PARAMS_TESTING.bootloader_program_hash
Z, ALPHA = 3, 2

# Pages the proof was generated over, as the public input names them
REGULAR_REF = PageReference(
    page_hash=regular_page_hash([1, 5, 2, 7]),
    size=2,
    product=cumulative_product([(1, 5), (2, 7)], Z, ALPHA),
)
CONTINUOUS_REF = PageReference(
    page_hash=continuous_page_hash([1, 2, 3]),
    start_address=100,
    size=3,
    product=cumulative_product([(100, 1), (101, 2), (102, 3)], Z, ALPHA),
)
PAGE_SECTION = encode_page_section([REGULAR_REF, CONTINUOUS_REF], padding=(1, 5))

BUNDLE = {
    "proof_params": ["0x1", "0x2"],
    "proof": ["0x10", "0x20", "0x30"],
    "public_input": ["0x7"] + [hex(w) for w in PAGE_SECTION],
    "z": "0x3",
    "alpha": "0x2",
    "task_metadata": [1, 11, 6, 1, 3],
    "memory_page_facts": {
        "regular_page": {"memory_pairs": ["0x1", "0x5", "0x2", "0x7"]},
        "continuous_pages": [
            {"start_addr": "0x64", "values": ["0x1", "2", 3]},
        ],
    },
}


def bundle_with(**changes):
    """Decoded BUNDLE with some top-level keys replaced."""
    return ProofBundle.from_dict(dict(BUNDLE, **changes))


@pytest.fixture
def facts():
    return FactRegistry()


@pytest.fixture
def aggregator(facts):
    return StatementAggregator(MemoryPageFactRegistry(facts), params=PARAMS_TESTING)


class TestDecoding:
    """Tests for ProofBundle.from_dict / from_json."""

    def test_from_dict(self):
        bundle = ProofBundle.from_dict(BUNDLE)
        assert (bundle.z, bundle.alpha) == (3, 2)
        assert bundle.regular_page == [1, 5, 2, 7]
        assert bundle.continuous_pages == [ContinuousPage(100, (1, 2, 3))]
        assert bundle.proof == [0x10, 0x20, 0x30]
        assert bundle.task_metadata == [1, 11, 6, 1, 3]
        assert bundle.page_count == 2

    def test_flat_layout(self):
        """Page data may sit at the top level."""
        data = {"z": 3, "alpha": 2, "regular_page": [1, 5]}
        bundle = ProofBundle.from_dict(data)
        assert bundle.regular_page == [1, 5]
        assert bundle.continuous_pages == []
        assert bundle.page_count == 1

    def test_from_json_text(self):
        assert ProofBundle.from_json(json.dumps(BUNDLE)) == ProofBundle.from_dict(BUNDLE)

    def test_from_json_file(self, tmp_path):
        path = tmp_path / "bundle.json"
        path.write_text(json.dumps(BUNDLE))
        assert ProofBundle.from_json(path) == ProofBundle.from_dict(BUNDLE)
        assert ProofBundle.from_json(str(path)) == ProofBundle.from_dict(BUNDLE)

    def test_to_dict_is_readable_back(self):
        bundle = ProofBundle.from_dict(BUNDLE)
        encoded = bundle.to_dict()
        assert encoded["z"] == "0x3"
        assert ProofBundle.from_dict(encoded) == bundle

    def test_cairo_aux_input(self):
        bundle = ProofBundle.from_dict(BUNDLE)
        assert bundle.cairo_aux_input() == bundle.public_input + [Z, ALPHA]
        assert bundle.cairo_aux_input()[0] == 7

    def test_missing_challenge(self):
        data = dict(BUNDLE)
        del data["alpha"]
        with pytest.raises(ValidationError, match="alpha"):
            ProofBundle.from_dict(data)

    def test_bad_integer(self):
        data = dict(BUNDLE, z="0xzz")
        with pytest.raises(ValidationError):
            ProofBundle.from_dict(data)

    def test_bool_is_not_integer(self):
        with pytest.raises(ValidationError):
            ProofBundle.from_dict(dict(BUNDLE, z=True))

    def test_bad_json(self):
        with pytest.raises(ValidationError):
            ProofBundle.from_json("{not json")

    def test_json_array_text(self):
        """Array text is parsed as JSON, then rejected as a non-object."""
        with pytest.raises(ValidationError, match="JSON object"):
            ProofBundle.from_json("[1, 2, 3]")

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValidationError, match="Cannot read"):
            ProofBundle.from_json(tmp_path / "absent.json")

    def test_not_an_object(self):
        with pytest.raises(ValidationError):
            ProofBundle.from_dict([1, 2, 3])

    def test_continuous_page_needs_start(self):
        data = dict(BUNDLE, memory_page_facts={"continuous_pages": [{"values": [1]}]})
        with pytest.raises(ValidationError):
            ProofBundle.from_dict(data)


class TestPublicMemory:
    """Tests for split_public_memory."""

    def test_split(self):
        cells = [
            {"page": 0, "address": "1", "value": "5"},
            {"page": 0, "address": "2", "value": "7"},
            {"page": 2, "address": "40", "value": "0x1"},
            {"page": 1, "address": "10", "value": "a"},
            {"page": 1, "address": "12", "value": "0xb"},
        ]
        regular, continuous = split_public_memory(cells)
        assert regular == [1, 5, 2, 7]
        assert continuous == [
            ContinuousPage(10, (10, 0, 11)),
            ContinuousPage(40, (1,)),
        ]

    def test_no_regular_page(self):
        regular, continuous = split_public_memory([MemoryCell(1, 5, 9)])
        assert regular is None
        assert continuous == [ContinuousPage(5, (9,))]

    def test_missing_key(self):
        with pytest.raises(ValidationError):
            split_public_memory([{"page": 0, "address": 1}])


class TestPageReferences:
    """Tests for reading the memory-page section of the public input."""

    def test_references_match_pages(self):
        refs = ProofBundle.from_dict(BUNDLE).page_references()
        assert refs == [REGULAR_REF, CONTINUOUS_REF]

    def test_section_is_the_tail(self):
        """Words before the section belong to other parts of the public input."""
        bundle = bundle_with(public_input=[9, 9, 9] + PAGE_SECTION)
        assert bundle.page_references() == [REGULAR_REF, CONTINUOUS_REF]

    def test_public_input_too_short(self):
        bundle = bundle_with(public_input=PAGE_SECTION[1:])
        with pytest.raises(LayoutError):
            bundle.page_references()

    def test_page_count_disagrees(self):
        """A section for one page does not fit a two-page bundle."""
        section = encode_page_section([REGULAR_REF])
        bundle = bundle_with(public_input=[0] * 10 + section)
        with pytest.raises(LayoutError):
            bundle.page_references()


class TestProcessing:
    """End-to-end bundle flow."""

    def test_register_pages(self, aggregator):
        bundle = ProofBundle.from_dict(BUNDLE)
        pages = register_bundle_pages(aggregator.pages, bundle)
        assert [p.index for p in pages] == [0, 1]
        assert pages[0].fact == compute_regular_page_fact([1, 5, 2, 7], Z, ALPHA)
        assert pages[1].fact == compute_continuous_page_fact(100, [1, 2, 3], Z, ALPHA)

    def test_bad_page_registers_nothing(self, aggregator, facts):
        """A bad second page leaves the valid first page uncommitted."""
        bundle = bundle_with(memory_page_facts={
            "regular_page": [1, 5, 2, 7],
            "continuous_pages": [{"start_addr": 100, "values": [1 << 255]}],
        })
        with pytest.raises(ValidationError):
            register_bundle_pages(aggregator.pages, bundle)
        assert len(aggregator.pages) == 0
        assert not facts.has_registered_fact()

    def test_process_bundle(self, aggregator, facts):
        bundle = ProofBundle.from_dict(BUNDLE)
        seen = []

        def verifier(b):
            seen.append(b)
            return True

        outcome = process_bundle(bundle, aggregator, BOOT, proof_verifier=verifier)

        continuous = outcome.pages[1]
        expected = fold_statement(BOOT, [compute_task_fact(11, [continuous.info])])
        assert outcome.aggregation.aggregate_fact == expected
        assert outcome.registered
        assert outcome.verified
        assert facts.is_valid(expected)
        assert all(facts.is_valid(p.fact) for p in outcome.pages)
        assert seen == [bundle]

    def test_rejected_proof_is_reported(self, aggregator, caplog):
        bundle = ProofBundle.from_dict(BUNDLE)
        with caplog.at_level(logging.WARNING, logger="factregistry.bundle"):
            outcome = process_bundle(bundle, aggregator, BOOT, proof_verifier=lambda b: False)
        assert outcome.proof_verified is False
        assert not outcome.verified
        assert "rejected" in caplog.text

    def test_rejected_proof_registers_nothing(self, aggregator, facts):
        bundle = ProofBundle.from_dict(BUNDLE)
        outcome = process_bundle(bundle, aggregator, BOOT, proof_verifier=lambda b: False)
        assert not outcome.registered
        assert outcome.pages == []
        assert not facts.is_valid(outcome.aggregation.aggregate_fact)
        assert not facts.has_registered_fact()
        assert len(aggregator.pages) == 0

    def test_no_verifier(self, aggregator, facts):
        outcome = process_bundle(ProofBundle.from_dict(BUNDLE), aggregator, BOOT)
        assert outcome.proof_verified is None
        assert not outcome.verified
        assert outcome.registered
        assert facts.is_valid(outcome.aggregation.aggregate_fact)

    def test_verifier_not_called_for_bad_bundle(self, aggregator):
        calls = []
        bundle = bundle_with(task_metadata=[1, 11, 6])
        with pytest.raises(LayoutError):
            process_bundle(bundle, aggregator, BOOT, proof_verifier=calls.append)
        assert calls == []

    @pytest.mark.parametrize("changes, error", [
        # Truncated task metadata
        ({"task_metadata": [1, 11, 6]}, LayoutError),
        # Task sizes disagree with the pages
        ({"task_metadata": [1, 11, 6, 1, 2]}, LayoutError),
        # Malformed second page
        ({"memory_page_facts": {
            "regular_page": [1, 5, 2, 7],
            "continuous_pages": [{"start_addr": 100, "values": [1 << 255, 2, 3]}],
        }}, ValidationError),
        # Public input names a different product
        ({"public_input": encode_page_section(
            [REGULAR_REF, PageReference(
                CONTINUOUS_REF.page_hash, 100, 3, CONTINUOUS_REF.product + 1
            )],
            padding=(1, 5),
        )}, LayoutError),
        # Public input names a different start address
        ({"public_input": encode_page_section(
            [REGULAR_REF, PageReference(
                CONTINUOUS_REF.page_hash, 200, 3, CONTINUOUS_REF.product
            )],
            padding=(1, 5),
        )}, LayoutError),
        # Public input carries no memory-page section
        ({"public_input": [7]}, LayoutError),
    ])
    def test_failed_call_registers_nothing(self, aggregator, facts, changes, error):
        with pytest.raises(error):
            process_bundle(bundle_with(**changes), aggregator, BOOT)
        assert len(aggregator.pages) == 0
        assert not facts.has_registered_fact()
        assert len(aggregator.pages.events) == 0
