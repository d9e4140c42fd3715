"""Fourier-space backprojection and reconstruction.

Gridding of rotated 2D/3D DFTs into a padded Fourier grid, point-group
symmetrisation and gridding-corrected Wiener/MAP reconstruction in PyTorch.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("torch-fourier-reconstruct")
except PackageNotFoundError:
    __version__ = "uninstalled"
__author__ = "Alister Burt"
__email__ = "alisterburt@gmail.com"

from .backprojector import BackProjector
from .blob import TabulatedFourierBlob
from .exceptions import DimensionMismatchError, OutOfSupportError, ReconstructionError
from .fourier_grid import FourierGrid, Interpolator
from .fsc import downsampled_average, downsampled_fourier_shell_correlation
from .lowres import get_lowres_data_and_weight, set_lowres_data_and_weight
from .reconstruct import (
    Reconstruction,
    ReconstructConfig,
    WholeMapPreweight,
    reconstruct,
)
from .slice_insertion import (
    backproject_rfft_2d_to_3d,
    backrotate_rfft_2d,
    backrotate_rfft_3d,
)
from .symmetrise import enforce_hermitian_symmetry, symmetrise
from .symmetry import SymmetryGroup

__all__ = [
    "BackProjector",
    "FourierGrid",
    "Interpolator",
    "TabulatedFourierBlob",
    "SymmetryGroup",
    "backrotate_rfft_2d",
    "backrotate_rfft_3d",
    "backproject_rfft_2d_to_3d",
    "enforce_hermitian_symmetry",
    "symmetrise",
    "get_lowres_data_and_weight",
    "set_lowres_data_and_weight",
    "downsampled_average",
    "downsampled_fourier_shell_correlation",
    "reconstruct",
    "Reconstruction",
    "ReconstructConfig",
    "WholeMapPreweight",
    "ReconstructionError",
    "DimensionMismatchError",
    "OutOfSupportError",
]
