"""
Public Parameters for Statement Aggregation

RegistryParams fixes everything an aggregation call checks against:
the expected orchestrating (bootloader) program identity and the set of
sub-verifiers a task may name. Parameters are immutable; compose a new
instance to change them.
"""

from dataclasses import dataclass, field
from typing import FrozenSet

from .errors import ConfigError
from .field import STARK_PRIME
from .keccak import encode_words, keccak256


# Sub-verifier id used by the upstream proof pipeline for Cairo proofs
DEFAULT_VERIFIER_ID = 6


@dataclass(frozen=True)
class RegistryParams:
    """
    Aggregation parameters.

    All parameters are immutable and hashable.
    """

    bootloader_program_hash: int = 0
    """Pre-agreed identity of the orchestrating program."""

    supported_verifier_ids: FrozenSet[int] = field(
        default_factory=lambda: frozenset({DEFAULT_VERIFIER_ID})
    )
    """Sub-verifier ids a task may name."""

    default_verifier_id: int = DEFAULT_VERIFIER_ID
    """Verifier id assumed for tasks that do not name one."""

    version: int = 1
    """Protocol version."""

    def __post_init__(self):
        if not isinstance(self.bootloader_program_hash, int) or not (
            0 <= self.bootloader_program_hash < STARK_PRIME
        ):
            raise ConfigError(
                f"bootloader_program_hash must be a field element, got "
                f"{self.bootloader_program_hash!r}"
            )
        ids = frozenset(self.supported_verifier_ids)
        if not ids:
            raise ConfigError("supported_verifier_ids must not be empty")
        if any(not isinstance(i, int) or i < 0 for i in ids):
            raise ConfigError(f"verifier ids must be non-negative ints: {sorted(ids)}")
        object.__setattr__(self, 'supported_verifier_ids', ids)
        if self.default_verifier_id not in ids:
            raise ConfigError(
                f"default_verifier_id {self.default_verifier_id} is not supported"
            )

    # ==========================================================================
    # Serialization
    # ==========================================================================

    def serialize(self) -> bytes:
        """
        Canonical serialization for binding.

        Format (32-byte words):
            version || bootloader_program_hash || default_verifier_id ||
            n_ids || sorted ids
        """
        ids = sorted(self.supported_verifier_ids)
        return encode_words(
            self.version,
            self.bootloader_program_hash,
            self.default_verifier_id,
            len(ids),
            *ids,
        )

    def hash(self) -> bytes:
        """Hash of parameters for binding."""
        return keccak256(self.serialize())

    def with_bootloader(self, program_hash: int) -> 'RegistryParams':
        """Copy with a different expected bootloader identity."""
        return RegistryParams(
            bootloader_program_hash=program_hash,
            supported_verifier_ids=self.supported_verifier_ids,
            default_verifier_id=self.default_verifier_id,
            version=self.version,
        )


# =============================================================================
# Preset Configurations
# =============================================================================

# Default: no bootloader pinned yet (identity 0), Cairo verifier only
PARAMS_DEFAULT = RegistryParams()

# Testing: a fixed bootloader identity and two verifier ids
PARAMS_TESTING = RegistryParams(
    bootloader_program_hash=0x5AB580B04E3532209F2C3F5E66F5A5A0F0E1D0C0B0A090807060504030201,
    supported_verifier_ids=frozenset({DEFAULT_VERIFIER_ID, 7}),
)
