"""Exceptions raised by the verification core.

Negative decisions (liveness failed, no match) are verdict values, not exceptions;
see `faceverify.pipeline`.
"""


class VerificationError(Exception):
    """Base class for every error raised by `faceverify`."""


class InvalidInput(VerificationError, ValueError):
    """Malformed landmark set or descriptor (wrong shape, non-finite values)."""


class NoFaceFound(VerificationError):
    """An extraction source found no face in the image."""


class DimensionMismatch(VerificationError, ValueError):
    """Two descriptors (or a descriptor and a gallery) differ in dimensionality."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"descriptor dimension mismatch: expected {expected}, got {actual}")
        self.expected = int(expected)
        self.actual = int(actual)


class EmptyGallery(VerificationError):
    """The gallery holds no enrolled identities."""


class ConfigError(VerificationError, ValueError):
    """Invalid or missing configuration value."""
