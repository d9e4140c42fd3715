"""Exceptions raised by the backprojector and reconstructor."""


class ReconstructionError(Exception):
    pass


class DimensionMismatchError(ReconstructionError, ValueError):
    """Input dimensionality is incompatible with the reference grid."""


class OutOfSupportError(ReconstructionError, ValueError):
    """A requested size or radius does not fit inside the padded grid."""
