"""
Error Taxonomy

Every failure is fail-fast: a raised error aborts the whole call and
leaves all stores exactly as they were before it.
"""


class FactRegistryError(Exception):
    """Base class for all registry errors."""


class ValidationError(FactRegistryError, ValueError):
    """Malformed, empty or non-canonical input."""


class LayoutError(FactRegistryError, ValueError):
    """Task metadata inconsistent with committed page data."""


class NotFoundError(FactRegistryError, KeyError):
    """Reference to a page that was never registered."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else ''


class ConfigError(FactRegistryError, ValueError):
    """Bad construction-time setup (delegation, parameters)."""


class UnsupportedVerifierError(FactRegistryError):
    """A task names a sub-verifier id that is not configured."""


class IdentityMismatchError(FactRegistryError):
    """The orchestrating program identity differs from the expected one."""
