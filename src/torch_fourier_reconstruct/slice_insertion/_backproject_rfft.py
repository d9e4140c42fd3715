import torch

from .._grids import _central_slice_frequency_grid, _rfft_frequency_grid
from ..exceptions import DimensionMismatchError, OutOfSupportError
from ..fourier_grid import Interpolator
from ._insert_fourier_samples import (
    _insert_fourier_samples,
    _prepare_matrices,
    _r_max_from_grid,
)


def _check_rfft_shape(rfft: torch.Tensor, ndim: int, name: str) -> int:
    if rfft.ndim < ndim:
        raise DimensionMismatchError(
            f"{name} must have at least {ndim} dimensions, got shape {tuple(rfft.shape)}"
        )
    *full, half = rfft.shape[-ndim:]
    n = full[0]
    if len(set(full)) != 1 or n % 2 != 0 or half != n // 2 + 1:
        raise DimensionMismatchError(
            f"{name} must be the rfft of an even sided square/cube, "
            f"got shape {tuple(rfft.shape[-ndim:])}"
        )
    return n


def _resolve_r_max(data: torch.Tensor, padding_factor: int, r_max: int | None) -> int:
    grid_r_max = _r_max_from_grid(data, padding_factor)
    if r_max is None:
        return grid_r_max
    if r_max < 0 or r_max > grid_r_max:
        raise OutOfSupportError(
            f"r_max must be within [0, {grid_r_max}] for this grid, got {r_max}"
        )
    return r_max


def _check_sample_weights(
    sample_weights: torch.Tensor | None, rfft: torch.Tensor
) -> None:
    if sample_weights is not None and sample_weights.shape != rfft.shape:
        raise DimensionMismatchError(
            f"sample weights of shape {tuple(sample_weights.shape)} do not match "
            f"the Fourier transform of shape {tuple(rfft.shape)}"
        )


def _check_grid(
    data: torch.Tensor, weight: torch.Tensor, ndim: int, rotation_matrices: torch.Tensor
) -> None:
    if data.ndim != ndim:
        raise DimensionMismatchError(
            f"reference grid must be {ndim}D for this insertion, got {data.ndim}D"
        )
    if weight.shape != data.shape:
        raise DimensionMismatchError(
            f"weight shape {tuple(weight.shape)} differs from data shape {tuple(data.shape)}"
        )
    if rotation_matrices.shape[-2:] != (ndim, ndim):
        raise DimensionMismatchError(
            f"expected ({ndim}, {ndim}) orientation matrices, "
            f"got {tuple(rotation_matrices.shape[-2:])}"
        )


def backrotate_rfft_2d(
    image_rfft: torch.Tensor,  # fftshifted rfft of (..., h, h) 2d image
    data: torch.Tensor,
    weight: torch.Tensor,
    rotation_matrices: torch.Tensor,  # (..., 2, 2)
    padding_factor: int = 2,
    r_max: int | None = None,
    inv: bool = False,
    sample_weights: torch.Tensor | None = None,
    interpolator: Interpolator = Interpolator.TRILINEAR,
    r_min_nn: float = 10,
    yx_matrices: bool = False,
) -> tuple[torch.Tensor, torch.Tensor]:
    """Insert in-plane rotated 2D Fourier transforms into a 2D reference grid.

    Parameters
    ----------
    image_rfft: torch.Tensor
        `(..., h, h // 2 + 1)` fftshifted rffts of 2D images.
    data: torch.Tensor
        Centred half-Hermitian `(2c + 1, c + 1)` complex grid to insert into.
    weight: torch.Tensor
        Real grid of the same shape as `data` accumulating weights.
    rotation_matrices: torch.Tensor
        `(..., 2, 2)` matrices left-multiplying xy column vectors.
    padding_factor: int
        Oversampling of the reference grid.
    r_max: int | None
        Maximum source frequency (Fourier pixels) inserted. Defaults to the
        largest radius the grid was allocated for.
    inv: bool
        Use the inverse of each matrix.
    sample_weights: torch.Tensor | None
        Per-pixel weights of the same shape as `image_rfft`. Samples are
        multiplied by them and they replace the unit weight of each sample.
    interpolator: Interpolator
        Interpolation scheme, see `r_min_nn`.
    r_min_nn: float
        Source radius below which the `NEAREST` interpolator is used.
    yx_matrices: bool
        Set to True if the provided matrices left multiply yx column vectors
        instead of xy column vectors.

    Returns
    -------
    data, weight: tuple[torch.Tensor, torch.Tensor]
        The updated grids.
    """
    h = _check_rfft_shape(image_rfft, ndim=2, name="image_rfft")
    _check_grid(data, weight, ndim=2, rotation_matrices=rotation_matrices)
    _check_sample_weights(sample_weights, image_rfft)

    freq_grid = _rfft_frequency_grid(
        image_shape=(h, h), fftshift=True, device=image_rfft.device
    )  # (h, w, 2) yx
    rotation_matrices = _prepare_matrices(
        rotation_matrices, inv=inv, zyx_matrices=yx_matrices, dtype=weight.dtype
    )
    return _insert_fourier_samples(
        source_rfft=image_rfft,
        source_frequencies=freq_grid,
        data=data,
        weight=weight,
        rotation_matrices=rotation_matrices,
        padding_factor=padding_factor,
        r_max=_resolve_r_max(data, padding_factor, r_max),
        sample_weights=sample_weights,
        interpolator=Interpolator(interpolator),
        r_min_nn=r_min_nn,
    )


def backrotate_rfft_3d(
    volume_rfft: torch.Tensor,  # fftshifted rfft of (..., d, d, d) 3d volume
    data: torch.Tensor,
    weight: torch.Tensor,
    rotation_matrices: torch.Tensor,  # (..., 3, 3)
    padding_factor: int = 2,
    r_max: int | None = None,
    inv: bool = False,
    sample_weights: torch.Tensor | None = None,
    interpolator: Interpolator = Interpolator.TRILINEAR,
    r_min_nn: float = 10,
    zyx_matrices: bool = False,
) -> tuple[torch.Tensor, torch.Tensor]:
    """Insert rotated 3D Fourier transforms into a 3D reference grid.

    Used to average volumes that are already oriented. Parameters are as in
    `backrotate_rfft_2d` with `(..., d, d, d // 2 + 1)` volume rffts and
    `(..., 3, 3)` matrices left-multiplying xyz column vectors.
    """
    d = _check_rfft_shape(volume_rfft, ndim=3, name="volume_rfft")
    _check_grid(data, weight, ndim=3, rotation_matrices=rotation_matrices)
    _check_sample_weights(sample_weights, volume_rfft)

    freq_grid = _rfft_frequency_grid(
        image_shape=(d, d, d), fftshift=True, device=volume_rfft.device
    )  # (d, h, w, 3) zyx
    rotation_matrices = _prepare_matrices(
        rotation_matrices, inv=inv, zyx_matrices=zyx_matrices, dtype=weight.dtype
    )
    return _insert_fourier_samples(
        source_rfft=volume_rfft,
        source_frequencies=freq_grid,
        data=data,
        weight=weight,
        rotation_matrices=rotation_matrices,
        padding_factor=padding_factor,
        r_max=_resolve_r_max(data, padding_factor, r_max),
        sample_weights=sample_weights,
        interpolator=Interpolator(interpolator),
        r_min_nn=r_min_nn,
    )


def backproject_rfft_2d_to_3d(
    image_rfft: torch.Tensor,  # fftshifted rfft of (..., h, h) 2d image
    data: torch.Tensor,
    weight: torch.Tensor,
    rotation_matrices: torch.Tensor,  # (..., 3, 3)
    padding_factor: int = 2,
    r_max: int | None = None,
    inv: bool = False,
    sample_weights: torch.Tensor | None = None,
    interpolator: Interpolator = Interpolator.TRILINEAR,
    r_min_nn: float = 10,
    zyx_matrices: bool = False,
) -> tuple[torch.Tensor, torch.Tensor]:
    """Insert 2D Fourier transforms into a 3D reference grid as central slices.

    The source pixel at logical frequency `(ip, jp)` is inserted at
    `padding_factor * A @ (jp, ip, 0)`, with `A` each of `rotation_matrices`
    (or its inverse when `inv` is set). Other parameters are as in
    `backrotate_rfft_2d`.
    """
    h = _check_rfft_shape(image_rfft, ndim=2, name="image_rfft")
    _check_grid(data, weight, ndim=3, rotation_matrices=rotation_matrices)
    _check_sample_weights(sample_weights, image_rfft)

    # generate grid of DFT sample frequencies for a central slice spanning the xy-plane
    freq_grid = _central_slice_frequency_grid(
        image_shape=(h, h), device=image_rfft.device
    )  # (h, w, 3) zyx
    rotation_matrices = _prepare_matrices(
        rotation_matrices, inv=inv, zyx_matrices=zyx_matrices, dtype=weight.dtype
    )
    return _insert_fourier_samples(
        source_rfft=image_rfft,
        source_frequencies=freq_grid,
        data=data,
        weight=weight,
        rotation_matrices=rotation_matrices,
        padding_factor=padding_factor,
        r_max=_resolve_r_max(data, padding_factor, r_max),
        sample_weights=sample_weights,
        interpolator=Interpolator(interpolator),
        r_min_nn=r_min_nn,
    )
