"""
Property-Based Testing with Hypothesis

Random pages and challenges exercise the algebraic and registration
properties that example-based tests only sample:
- swapping two values changes the product by α(v1 - v2)(a2 - a1)
- registration is idempotent
- page layouts and start addresses never share a fact
- a rejected page leaves no trace
"""

import pytest
from hypothesis import given, strategies as st, settings, assume

from factregistry import (
    STARK_PRIME,
    FactRegistry,
    MemoryPageFactRegistry,
    ValidationError,
    cumulative_product,
    fold_statement,
    keccak_words,
)


# =============================================================================
# STRATEGIES
# =============================================================================

felts = st.integers(min_value=0, max_value=STARK_PRIME - 1)
small_felts = st.integers(min_value=0, max_value=2 ** 64)
values_lists = st.lists(small_felts, min_size=1, max_size=8)
out_of_field = st.one_of(
    st.integers(min_value=STARK_PRIME, max_value=2 ** 256 - 1),
    st.integers(max_value=-1),
)

# Keccak is pure Python; keep the hashing properties to a modest count
HASHING = settings(max_examples=50, deadline=None)


# =============================================================================
# CUMULATIVE PRODUCT
# =============================================================================

class TestProductProperties:
    """Algebraic properties of the cumulative product."""

    @given(a1=felts, a2=felts, v1=felts, v2=felts, z=felts, alpha=felts)
    @settings(max_examples=300)
    def test_swap_difference(self, a1, a2, v1, v2, z, alpha):
        """P(a1→v1, a2→v2) - P(a1→v2, a2→v1) = α(v1 - v2)(a2 - a1)"""
        p1 = cumulative_product([(a1, v1), (a2, v2)], z, alpha)
        p2 = cumulative_product([(a1, v2), (a2, v1)], z, alpha)
        expected = alpha * (v1 - v2) * (a2 - a1) % STARK_PRIME
        assert (p1 - p2) % STARK_PRIME == expected

    @given(a1=felts, a2=felts, v1=felts, v2=felts, z=felts, alpha=felts)
    @settings(max_examples=300)
    def test_swap_detected(self, a1, a2, v1, v2, z, alpha):
        assume(alpha != 0 and v1 != v2 and a1 != a2)
        p1 = cumulative_product([(a1, v1), (a2, v2)], z, alpha)
        p2 = cumulative_product([(a1, v2), (a2, v1)], z, alpha)
        assert p1 != p2

    @given(entries=st.lists(st.tuples(felts, felts), max_size=6), z=felts, alpha=felts)
    @settings(max_examples=200)
    def test_entry_order_irrelevant(self, entries, z, alpha):
        """Reordering whole (address, value) entries keeps the product."""
        forward = cumulative_product(entries, z, alpha)
        backward = cumulative_product(list(reversed(entries)), z, alpha)
        assert forward == backward

    @given(entries=st.lists(st.tuples(felts, felts), max_size=6), z=felts, alpha=felts)
    @settings(max_examples=200)
    def test_in_field(self, entries, z, alpha):
        assert 0 <= cumulative_product(entries, z, alpha) < STARK_PRIME


# =============================================================================
# REGISTRATION
# =============================================================================

class TestRegistrationProperties:
    """Registration invariants over random pages."""

    @given(start=small_felts, values=values_lists, z=small_felts, alpha=small_felts)
    @HASHING
    def test_idempotent(self, start, values, z, alpha):
        facts = FactRegistry()
        pages = MemoryPageFactRegistry(facts)

        first = pages.register_continuous_page(start, values, z, alpha)
        second = pages.register_continuous_page(start, values, z, alpha)

        assert first == second
        assert len(pages) == 1
        assert len(facts) == 1
        assert len(pages.events) == 1

    @given(start=small_felts, values=values_lists, z=small_felts, alpha=small_felts)
    @HASHING
    def test_layouts_never_share_a_fact(self, start, values, z, alpha):
        """A continuous page and the equivalent regular page differ only by type."""
        pages = MemoryPageFactRegistry()
        pairs = []
        for i, v in enumerate(values):
            pairs.extend([start + i, v])

        continuous = pages.register_continuous_page(start, values, z, alpha)
        regular = pages.register_regular_page(pairs, z, alpha)

        assert continuous.product == regular.product
        assert continuous.size == regular.size
        assert continuous.fact != regular.fact

    @given(
        starts=st.tuples(
            st.integers(min_value=0, max_value=2 ** 16),
            st.integers(min_value=0, max_value=2 ** 16),
        ).filter(lambda s: s[0] != s[1]),
        values=st.lists(st.integers(min_value=0, max_value=2 ** 16), min_size=1, max_size=6),
        alpha=st.integers(min_value=1, max_value=2 ** 16),
    )
    @HASHING
    def test_start_address_isolation(self, starts, values, alpha):
        # With z = 0 and small inputs every factor grows with the start
        # address and the product never wraps
        pages = MemoryPageFactRegistry()
        low = pages.register_continuous_page(starts[0], values, 0, alpha)
        high = pages.register_continuous_page(starts[1], values, 0, alpha)

        assert low.page_hash == high.page_hash
        assert low.fact != high.fact
        assert pages.lookup(low.page_hash, starts[0]) == low
        assert pages.lookup(high.page_hash, starts[1]) == high

    @given(data=st.data())
    @settings(max_examples=100, deadline=None)
    def test_rejected_page_leaves_no_trace(self, data):
        values = data.draw(values_lists)
        bad = data.draw(out_of_field)
        position = data.draw(st.integers(min_value=0, max_value=len(values)))
        values = values[:position] + [bad] + values[position:]

        facts = FactRegistry()
        pages = MemoryPageFactRegistry(facts)
        with pytest.raises(ValidationError):
            pages.register_continuous_page(0, values, 3, 2)

        assert len(pages) == 0
        assert not facts.has_registered_fact()
        assert len(pages.events) == 0


# =============================================================================
# STATEMENT FOLD
# =============================================================================

class TestFoldProperties:
    """The fold chain binds identity, content and order."""

    @given(
        boot=felts,
        labels=st.lists(st.integers(min_value=0, max_value=2 ** 32), min_size=1, max_size=4),
    )
    @HASHING
    def test_identity_binding(self, boot, labels):
        task_facts = [keccak_words(label) for label in labels]
        other = (boot + 1) % STARK_PRIME
        assert fold_statement(boot, task_facts) != fold_statement(other, task_facts)

    @given(
        boot=felts,
        labels=st.lists(
            st.integers(min_value=0, max_value=2 ** 32), min_size=2, max_size=4, unique=True
        ),
    )
    @HASHING
    def test_order_binding(self, boot, labels):
        task_facts = [keccak_words(label) for label in labels]
        assert fold_statement(boot, task_facts) != fold_statement(boot, task_facts[::-1])
