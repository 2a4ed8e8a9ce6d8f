"""
Fact Registries

A fact is a 32-byte content-addressed digest standing for a verified
claim. The set of registered facts only grows: once is_valid(fact) is
True it stays True for the lifetime of the store.

Two stores share one capability interface:
- FactRegistry: the plain append-only set
- DelegatingFactRegistry: wraps a primary store and, until a fixed
  expiration time, falls back to a secondary (reference) store
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Callable, Optional, Set
import logging
import time

from .errors import ConfigError, ValidationError
from .field import WORD_SIZE


logger = logging.getLogger(__name__)

Fact = bytes

# Largest representable timestamp (uint256 seconds)
MAX_TIMESTAMP = (1 << 256) - 1

# Fact queried once to check a reference store; never a real digest
CAPABILITY_FACT = b'\x00' * WORD_SIZE


def is_fact(value: object) -> bool:
    """True if value is a well-formed 32-byte fact."""
    return isinstance(value, (bytes, bytearray)) and len(value) == WORD_SIZE


class FactStore(ABC):
    """Capability interface: membership oracle plus registration."""

    @abstractmethod
    def is_valid(self, fact: Fact) -> bool:
        """
        Membership query.

        MUST be pure and total: never raises, never blocks.
        """
        pass

    @abstractmethod
    def register_fact(self, fact: Fact) -> None:
        """
        Add fact to the store.

        Idempotent: registering a present fact is a no-op.
        """
        pass


class FactRegistry(FactStore):
    """
    Append-only in-memory fact set.

    Properties:
    - Monotonic: facts are never removed
    - Idempotent registration
    """

    def __init__(self):
        self._facts: Set[bytes] = set()

    def is_valid(self, fact: Fact) -> bool:
        if not is_fact(fact):
            return False
        return bytes(fact) in self._facts

    def register_fact(self, fact: Fact) -> None:
        if not is_fact(fact):
            raise ValidationError(f"Fact must be {WORD_SIZE} bytes")
        self._facts.add(bytes(fact))

    def has_registered_fact(self) -> bool:
        """True once at least one fact has been registered."""
        return bool(self._facts)

    def __len__(self) -> int:
        return len(self._facts)

    def __contains__(self, fact: object) -> bool:
        return self.is_valid(fact)


def negotiate_capability(candidate: object) -> FactStore:
    """
    Check that candidate behaves like a fact store.

    One benign query: is_valid(CAPABILITY_FACT) must return a bool. Any other
    outcome (missing method, exception, non-bool answer) is a ConfigError
    naming the reason.
    """
    for name in ('is_valid', 'register_fact'):
        if not callable(getattr(candidate, name, None)):
            raise ConfigError(
                f"Reference {type(candidate).__name__} has no callable {name}()"
            )

    try:
        answer = candidate.is_valid(CAPABILITY_FACT)
    except Exception as e:
        raise ConfigError(f"Reference store check failed: {e}") from e

    if not isinstance(answer, bool):
        raise ConfigError(
            f"Reference store check returned {type(answer).__name__}, expected bool"
        )
    return candidate


class DelegatingFactRegistry(FactStore):
    """
    Fact store with a time-bounded referral to a secondary store.

    is_valid(fact):
        True if the primary holds fact; otherwise, while now < expiration,
        the answer of reference.is_valid(fact); otherwise False.

    The expiration is fixed at construction and never renewed. A None
    reference with zero duration disables delegation entirely.
    """

    def __init__(
        self,
        primary: Optional[FactStore] = None,
        reference: Optional[object] = None,
        referral_duration: int = 0,
        clock: Callable[[], float] = time.time
    ):
        """
        Args:
            primary: Local store (a fresh FactRegistry if omitted)
            reference: Secondary store consulted while the referral lasts
            referral_duration: Referral lifetime in clock units
            clock: Zero-argument callable returning the current time
        """
        self.primary = primary if primary is not None else FactRegistry()
        self._clock = clock

        if isinstance(referral_duration, bool) or not isinstance(referral_duration, int):
            raise ConfigError(f"referral_duration must be an int, got {referral_duration!r}")
        if referral_duration < 0:
            raise ConfigError(f"referral_duration must be non-negative, got {referral_duration}")

        if reference is None:
            if referral_duration != 0:
                raise ConfigError("referral_duration given without a reference store")
            self.reference: Optional[FactStore] = None
            self.referral_expiration = 0
            return

        if reference is self or reference is self.primary:
            raise ConfigError("Reference store must differ from the store itself")

        self.reference = negotiate_capability(reference)

        expiration = int(clock()) + referral_duration
        if expiration > MAX_TIMESTAMP:
            raise ConfigError(f"Referral expiration overflows: {expiration}")
        self.referral_expiration = expiration

        logger.debug(
            "Delegating to %s until %d", type(reference).__name__, expiration
        )

    @property
    def delegation_enabled(self) -> bool:
        return self.reference is not None

    def referral_active(self) -> bool:
        """True while delegated lookups are still honoured."""
        return self.reference is not None and self._clock() < self.referral_expiration

    def is_valid(self, fact: Fact) -> bool:
        if self.primary.is_valid(fact):
            return True
        if self.reference is None:
            return False
        if not self.referral_active():
            logger.warning("Referral expired at %d, not delegating", self.referral_expiration)
            return False
        try:
            return self.reference.is_valid(fact) is True
        except Exception:
            # Queries never fail; a broken reference answers False
            logger.warning("Reference store raised during is_valid", exc_info=True)
            return False

    def register_fact(self, fact: Fact) -> None:
        self.primary.register_fact(fact)

    def has_registered_fact(self) -> bool:
        has = getattr(self.primary, 'has_registered_fact', None)
        return bool(has()) if callable(has) else False
