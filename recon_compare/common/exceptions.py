"""Error types raised while aligning and scoring reconstructions."""


class InsufficientDataError(ValueError):
    """Too few (or degenerate) correspondences to estimate a transform."""


class InvalidInputError(ValueError):
    """Malformed arguments, e.g. non-increasing histogram bins or empty samples."""


class ReconstructionReadError(OSError):
    """A reconstruction file exists but could not be parsed."""
