"""Stateful accumulator for Fourier-space backprojection and reconstruction."""

import copy
import logging

import torch

from .blob import TabulatedFourierBlob
from .exceptions import DimensionMismatchError, ReconstructionError
from .fourier_grid import FourierGrid, Interpolator
from .fsc import downsampled_average, downsampled_fourier_shell_correlation
from .lowres import get_lowres_data_and_weight, set_lowres_data_and_weight
from .reconstruct import Reconstruction, ReconstructConfig, reconstruct
from .slice_insertion import (
    backproject_rfft_2d_to_3d,
    backrotate_rfft_2d,
    backrotate_rfft_3d,
)
from .symmetrise import enforce_hermitian_symmetry, symmetrise
from .symmetry import SymmetryGroup

logger = logging.getLogger(__name__)

_WEIGHT_DTYPES = {torch.complex64: torch.float32, torch.complex128: torch.float64}


class BackProjector:
    """Accumulate rotated Fourier samples and reconstruct from them.

    The backprojector owns a padded `FourierGrid` of summed samples, a grid
    of summed weights, the blob used for gridding correction and the point
    group used for symmetrisation. All Fourier inputs are fftshifted rffts
    and all orientation matrices left-multiply xyz column vectors unless
    `zyx_matrices` is set.

    Accumulators are not safe to fill from several threads at once; fill one
    per worker and reduce them with `add` (or `+`).

    Parameters
    ----------
    ori_size: int
        Side length of the original images or volumes.
    ref_dim: int
        Dimensionality of the reference (2 or 3).
    symmetry: str | SymmetryGroup | None
        Point group symbol such as 'c1', 'd2' or 'i'.
    interpolator: Interpolator
        Interpolation used when inserting samples.
    padding_factor: int
        Oversampling of the Fourier grid.
    r_min_nn: int
        Radius below which the `NEAREST` interpolator uses nearest neighbour,
        trilinear at or beyond it (see `FourierGrid`).
    blob_order: int
        Order of the Kaiser-Bessel gridding blob.
    blob_radius: float
        Radius of the blob in original Fourier pixels.
    blob_alpha: float
        Taper of the blob.
    data_dim: int
        Dimensionality of the inserted data (2 or 3).
    dtype: torch.dtype
        `torch.complex64` or `torch.complex128`, weights use the matching
        real dtype.
    device: torch.device | None
        Device holding the grids.
    """

    def __init__(
        self,
        ori_size: int,
        ref_dim: int,
        symmetry: "str | SymmetryGroup | None" = "c1",
        interpolator: Interpolator = Interpolator.TRILINEAR,
        padding_factor: int = 2,
        r_min_nn: int = 10,
        blob_order: int = 0,
        blob_radius: float = 1.9,
        blob_alpha: float = 15.0,
        data_dim: int = 2,
        dtype: torch.dtype = torch.complex64,
        device: torch.device | None = None,
    ):
        if dtype not in _WEIGHT_DTYPES:
            raise ValueError(
                f"dtype must be one of {tuple(_WEIGHT_DTYPES)}, got {dtype}"
            )
        if data_dim > ref_dim:
            raise DimensionMismatchError(
                f"cannot insert {data_dim}D data into a {ref_dim}D reference"
            )
        self.grid = FourierGrid(
            ori_size=ori_size,
            ref_dim=ref_dim,
            padding_factor=padding_factor,
            interpolator=interpolator,
            r_min_nn=r_min_nn,
            data_dim=data_dim,
            dtype=dtype,
            device=device,
        )
        self.symmetry = SymmetryGroup.parse(symmetry)
        if ref_dim == 2 and len(self.symmetry) > 0:
            raise ValueError(
                f"symmetry {self.symmetry} requires a 3D reference, got ref_dim=2"
            )
        self.blob = TabulatedFourierBlob(
            radius=blob_radius * padding_factor, alpha=blob_alpha, order=blob_order
        )
        self.weight = torch.zeros(
            size=(0,) * ref_dim, dtype=_WEIGHT_DTYPES[dtype], device=self.grid.device
        )

    @property
    def data(self) -> torch.Tensor:
        return self.grid.data

    @data.setter
    def data(self, value: torch.Tensor) -> None:
        self.grid.data = value

    @property
    def ori_size(self) -> int:
        return self.grid.ori_size

    @property
    def padding_factor(self) -> int:
        return self.grid.padding_factor

    @property
    def pad_size(self) -> int:
        return self.grid.pad_size

    @property
    def r_max(self) -> int:
        return self.grid.r_max

    @property
    def max_r2(self) -> int:
        return self.grid.max_r2

    @property
    def ref_dim(self) -> int:
        return self.grid.ref_dim

    @property
    def data_dim(self) -> int:
        return self.grid.data_dim

    def initialise_data_and_weight(self, current_size: int = -1) -> None:
        """Allocate zeroed grids holding frequencies up to `current_size // 2`."""
        self.grid.initialise(current_size)
        self.weight = torch.zeros(
            size=self.grid.shape, dtype=self.weight.dtype, device=self.grid.device
        )
        logger.debug(
            f"initialised {self.ref_dim}D grids of shape {self.grid.shape} "
            f"(r_max={self.r_max}, padding factor {self.padding_factor})"
        )

    def init_zeros(self, current_size: int = -1) -> None:
        self.initialise_data_and_weight(current_size)

    def _check_initialised(self) -> None:
        if self.data.numel() == 0:
            raise ReconstructionError(
                "grids are not allocated, call initialise_data_and_weight first"
            )

    def _insertion_kwargs(self, sample_weights: torch.Tensor | None) -> dict:
        return dict(
            padding_factor=self.padding_factor,
            r_max=self.r_max,
            sample_weights=sample_weights,
            interpolator=self.grid.interpolator,
            r_min_nn=self.grid.r_min_nn,
        )

    def set_2d_fourier_transform(
        self,
        fourier_transform: torch.Tensor,
        rotation_matrices: torch.Tensor,
        inv: bool = False,
        sample_weights: torch.Tensor | None = None,
    ) -> None:
        """Insert data with the primitive matching `data_dim` and `ref_dim`."""
        if self.ref_dim == 2:
            self.backrotate_2d(fourier_transform, rotation_matrices, inv, sample_weights)
        elif self.data_dim == 3:
            self.backrotate_3d(fourier_transform, rotation_matrices, inv, sample_weights)
        else:
            self.backproject(fourier_transform, rotation_matrices, inv, sample_weights)

    def backrotate_2d(
        self,
        image_rfft: torch.Tensor,
        rotation_matrices: torch.Tensor,
        inv: bool = False,
        sample_weights: torch.Tensor | None = None,
        yx_matrices: bool = False,
    ) -> None:
        if self.ref_dim != 2:
            raise DimensionMismatchError(
                f"2D rotation needs a 2D reference, got ref_dim={self.ref_dim}"
            )
        self._check_initialised()
        self.grid.data, self.weight = backrotate_rfft_2d(
            image_rfft,
            self.data,
            self.weight,
            rotation_matrices,
            inv=inv,
            yx_matrices=yx_matrices,
            **self._insertion_kwargs(sample_weights),
        )

    def backrotate_3d(
        self,
        volume_rfft: torch.Tensor,
        rotation_matrices: torch.Tensor,
        inv: bool = False,
        sample_weights: torch.Tensor | None = None,
        zyx_matrices: bool = False,
    ) -> None:
        if self.ref_dim != 3:
            raise DimensionMismatchError(
                f"3D rotation needs a 3D reference, got ref_dim={self.ref_dim}"
            )
        self._check_initialised()
        self.grid.data, self.weight = backrotate_rfft_3d(
            volume_rfft,
            self.data,
            self.weight,
            rotation_matrices,
            inv=inv,
            zyx_matrices=zyx_matrices,
            **self._insertion_kwargs(sample_weights),
        )

    def backproject(
        self,
        image_rfft: torch.Tensor,
        rotation_matrices: torch.Tensor,
        inv: bool = False,
        sample_weights: torch.Tensor | None = None,
        zyx_matrices: bool = False,
    ) -> None:
        if self.ref_dim != 3:
            raise DimensionMismatchError(
                f"backprojection needs a 3D reference, got ref_dim={self.ref_dim}"
            )
        self._check_initialised()
        self.grid.data, self.weight = backproject_rfft_2d_to_3d(
            image_rfft,
            self.data,
            self.weight,
            rotation_matrices,
            inv=inv,
            zyx_matrices=zyx_matrices,
            **self._insertion_kwargs(sample_weights),
        )

    def get_lowres_data_and_weight(
        self, lowres_r_max: int
    ) -> tuple[torch.Tensor, torch.Tensor]:
        self._check_initialised()
        return get_lowres_data_and_weight(
            self.data, self.weight, self.padding_factor, lowres_r_max
        )

    def set_lowres_data_and_weight(
        self,
        lowres_data: torch.Tensor,
        lowres_weight: torch.Tensor,
        lowres_r_max: int,
    ) -> None:
        self._check_initialised()
        set_lowres_data_and_weight(
            self.data,
            self.weight,
            lowres_data,
            lowres_weight,
            self.padding_factor,
            lowres_r_max,
        )

    def get_downsampled_average(self) -> torch.Tensor:
        self._check_initialised()
        return downsampled_average(
            self.data, self.weight, self.ori_size, self.padding_factor, self.r_max
        )

    @staticmethod
    def calculate_downsampled_fourier_shell_correlation(
        average_1: torch.Tensor, average_2: torch.Tensor
    ) -> torch.Tensor:
        return downsampled_fourier_shell_correlation(average_1, average_2)

    def enforce_hermitian_symmetry(self) -> None:
        self._check_initialised()
        enforce_hermitian_symmetry(self.data, self.weight)

    def symmetrise(self) -> None:
        self._check_initialised()
        if self.ref_dim == 3:
            symmetrise(
                self.data, self.weight, self.symmetry.matrices, max_r2=self.max_r2
            )

    def reconstruct(
        self,
        tau2: torch.Tensor | None = None,
        fsc: torch.Tensor | None = None,
        config: ReconstructConfig | None = None,
        **config_kwargs,
    ) -> Reconstruction:
        """Reconstruct from the accumulated grids.

        The grids are symmetrised and preweighted in place; `clone()` the
        backprojector first to keep inserting afterwards. Parameters are
        taken from `config` or, when it is not given, from keyword arguments
        of `ReconstructConfig`.
        """
        self._check_initialised()
        if config is None:
            config = ReconstructConfig(**config_kwargs)
        elif config_kwargs:
            raise TypeError("pass either a config or keyword arguments, not both")
        symmetry_matrices = self.symmetry.matrices if self.ref_dim == 3 else None
        return reconstruct(
            self.data,
            self.weight,
            ori_size=self.ori_size,
            padding_factor=self.padding_factor,
            r_max=self.r_max,
            blob=self.blob,
            symmetry_matrices=symmetry_matrices,
            interpolator=self.grid.interpolator,
            r_min_nn=self.grid.r_min_nn,
            tau2=tau2,
            fsc=fsc,
            config=config,
        )

    def clone(self) -> "BackProjector":
        other = copy.copy(self)
        other.grid = self.grid.clone()
        other.weight = self.weight.clone()
        return other

    def add(self, other: "BackProjector") -> "BackProjector":
        """Add the grids of a compatible accumulator to this one in place."""
        if not isinstance(other, BackProjector):
            raise TypeError(f"cannot add {type(other)} to a BackProjector")
        for name in ("ori_size", "ref_dim", "padding_factor", "r_max"):
            if getattr(self, name) != getattr(other, name):
                raise DimensionMismatchError(
                    f"accumulators differ in {name}: "
                    f"{getattr(self, name)} != {getattr(other, name)}"
                )
        self.grid.data = self.data + other.data.to(self.data.device)
        self.weight = self.weight + other.weight.to(self.weight.device)
        return self

    def __add__(self, other: "BackProjector") -> "BackProjector":
        return self.clone().add(other)

    def clear(self) -> None:
        self.grid.clear()
        self.weight = torch.zeros(
            size=(0,) * self.ref_dim, dtype=self.weight.dtype, device=self.grid.device
        )

    def __repr__(self):
        return (
            f"{self.__class__.__name__}(ori_size={self.ori_size}, "
            f"ref_dim={self.ref_dim}, symmetry={str(self.symmetry)!r}, "
            f"padding_factor={self.padding_factor}, r_max={self.r_max})"
        )
