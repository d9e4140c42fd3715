"""Padded, centred, half-Hermitian Fourier grid shared by projection and backprojection."""

import copy
import enum

import torch

from ._dft_utils import _support_mask
from ._grids import _rfft_frequency_grid
from .exceptions import OutOfSupportError


class Interpolator(enum.Enum):
    NEAREST = "nearest"
    TRILINEAR = "trilinear"


class FourierGrid:
    """Centred half-Hermitian grid of a padded Fourier transform.

    The grid holds logical frequencies `(kp, ip, jp)` (or `(ip, jp)` for 2D
    references) with `jp >= 0`. Along the full dimensions the DC component
    sits at index `center`, along the half dimension at index 0. After
    `initialise(current_size)` the live voxels are those with
    `kp^2 + ip^2 + jp^2 <= max_r2`, with `max_r2 = (padding_factor * r_max)^2`.
    One extra voxel is kept around the live sphere so that trilinear
    neighbours of any live sample are addressable.

    Parameters
    ----------
    ori_size: int
        Side length of the original (unpadded) images or volume.
    ref_dim: int
        Dimensionality of the reference grid (2 or 3).
    padding_factor: int
        Oversampling of the Fourier grid relative to `ori_size`.
    interpolator: Interpolator
        Interpolation kernel used when inserting samples.
    r_min_nn: int
        Radius (original Fourier pixels) below which nearest-neighbour
        interpolation is used by the `NEAREST` interpolator. Samples at or
        beyond it are inserted trilinearly. RELION documents `r_min_nn` as
        the "minimum radius for NN interpolation", the reverse reading.
    data_dim: int
        Dimensionality of the data inserted into the grid (2 or 3).
    dtype: torch.dtype
        Complex dtype of the data array.
    device: torch.device | None
        Device on which the grid lives.
    """

    def __init__(
        self,
        ori_size: int,
        ref_dim: int,
        padding_factor: int = 2,
        interpolator: Interpolator = Interpolator.TRILINEAR,
        r_min_nn: int = 10,
        data_dim: int = 2,
        dtype: torch.dtype = torch.complex64,
        device: torch.device | None = None,
    ):
        if ori_size <= 0 or ori_size % 2 != 0:
            raise ValueError(f"ori_size must be even and > 0, got {ori_size}")
        if ref_dim not in (2, 3):
            raise ValueError(f"ref_dim must be 2 or 3, got {ref_dim}")
        if data_dim not in (2, 3):
            raise ValueError(f"data_dim must be 2 or 3, got {data_dim}")
        if int(padding_factor) != padding_factor or padding_factor < 1:
            raise ValueError(f"padding_factor must be an integer >= 1, got {padding_factor}")
        if not dtype.is_complex:
            raise ValueError(f"dtype must be complex, got {dtype}")
        self.ori_size = ori_size
        self.ref_dim = ref_dim
        self.data_dim = data_dim
        self.padding_factor = int(padding_factor)
        self.pad_size = self.padding_factor * ori_size
        self.interpolator = Interpolator(interpolator)
        self.r_min_nn = r_min_nn
        self.dtype = dtype
        self.device = torch.device("cpu") if device is None else torch.device(device)
        self.r_max = 0
        self.data = torch.zeros(size=(0,) * ref_dim, dtype=dtype, device=self.device)

    @property
    def max_r2(self) -> int:
        return (self.padding_factor * self.r_max) ** 2

    @property
    def center(self) -> int:
        return self.padding_factor * self.r_max + 1

    @property
    def shape(self) -> tuple[int, ...]:
        side = 2 * self.center + 1
        return (side,) * (self.ref_dim - 1) + (self.center + 1,)

    def initialise(self, current_size: int = -1) -> None:
        """Allocate a zero filled grid for frequencies up to `current_size // 2`."""
        if current_size == -1:
            current_size = self.ori_size
        if current_size < 0 or current_size % 2 != 0:
            raise OutOfSupportError(
                f"current_size must be even and >= 0, got {current_size}"
            )
        if current_size > self.ori_size:
            raise OutOfSupportError(
                f"current_size ({current_size}) exceeds the original size "
                f"({self.ori_size}) supported by the padded grid"
            )
        self.r_max = current_size // 2
        self.data = torch.zeros(size=self.shape, dtype=self.dtype, device=self.device)

    def frequency_grid(self) -> torch.Tensor:
        """Logical integer frequencies of every voxel, `(*shape, ref_dim)` zyx."""
        side = 2 * self.center + 1
        return _rfft_frequency_grid(
            image_shape=(side,) * self.ref_dim, fftshift=True, device=self.device
        )

    def support_mask(self) -> torch.Tensor:
        return _support_mask(self.shape, self.max_r2, device=self.device)

    def clone(self) -> "FourierGrid":
        other = copy.copy(self)
        other.data = self.data.clone()
        return other

    def clear(self) -> None:
        self.r_max = 0
        self.data = torch.zeros(
            size=(0,) * self.ref_dim, dtype=self.dtype, device=self.device
        )
