"""Hermitian and point-group symmetry enforcement on accumulated grids."""

import logging

import einops
import torch
from torch_image_interpolation import sample_image_3d

from ._dft_utils import _frequencies_to_array_coordinates
from ._grids import _rfft_frequency_grid
from .exceptions import DimensionMismatchError
from .slice_insertion._insert_fourier_samples import _prepare_matrices

logger = logging.getLogger(__name__)


def enforce_hermitian_symmetry(
    data: torch.Tensor, weight: torch.Tensor
) -> tuple[torch.Tensor, torch.Tensor]:
    """Make the `jp = 0` plane (or line) of a centred half grid Hermitian.

    Every voxel `(kp, ip, 0)` and its partner `(-kp, -ip, 0)` are replaced by
    the mean of the voxel and the conjugate of its partner, weights by the
    mean of both weights. Grids are modified in place.
    """
    if weight.shape != data.shape:
        raise DimensionMismatchError(
            f"weight shape {tuple(weight.shape)} differs from data shape {tuple(data.shape)}"
        )
    # centred grids have odd full dims, the partner of index a is 2c - a
    full_dims = tuple(range(data.ndim - 1))
    data_plane = data[..., 0]
    weight_plane = weight[..., 0]
    data[..., 0] = 0.5 * (data_plane + torch.conj(torch.flip(data_plane, dims=full_dims)))
    weight[..., 0] = 0.5 * (weight_plane + torch.flip(weight_plane, dims=full_dims))
    return data, weight


def symmetrise(
    data: torch.Tensor,
    weight: torch.Tensor,
    symmetry_matrices: torch.Tensor,  # (n, 3, 3) non-identity operators
    max_r2: float,
    zyx_matrices: bool = False,
) -> tuple[torch.Tensor, torch.Tensor]:
    """Sum a 3D grid over the operators of a point group.

    After the call each voxel `v` inside `max_r2` holds `D(v) + sum_R D(R v)`
    (same for the weights), where `D(R v)` is trilinearly sampled from the
    grid as it was before the call. Samples landing in the redundant half
    transform are read from their Hermitian partner and conjugated.

    Parameters
    ----------
    data: torch.Tensor
        `(d, d, d // 2 + 1)` centred half-Hermitian grid.
    weight: torch.Tensor
        Weights of the same shape as `data`.
    symmetry_matrices: torch.Tensor
        `(n, 3, 3)` rotations left-multiplying xyz column vectors, identity
        excluded.
    max_r2: float
        Squared radius (padded Fourier pixels) of the voxels to symmetrise.
    zyx_matrices: bool
        Set to True if the provided matrices left multiply zyx column vectors
        instead of xyz column vectors.

    Returns
    -------
    data, weight: tuple[torch.Tensor, torch.Tensor]
        The symmetrised grids, modified in place.
    """
    if data.ndim != 3:
        raise DimensionMismatchError(
            f"symmetrisation requires a 3D reference grid, got {data.ndim}D"
        )
    if weight.shape != data.shape:
        raise DimensionMismatchError(
            f"weight shape {tuple(weight.shape)} differs from data shape {tuple(data.shape)}"
        )
    if len(symmetry_matrices) == 0:
        return data, weight

    side = data.shape[0]
    center = side // 2
    freq_grid = _rfft_frequency_grid(
        image_shape=(side, side, side), fftshift=True, device=data.device
    )  # (d, d, d // 2 + 1, 3) zyx
    r2 = einops.reduce(freq_grid**2, "... f -> ...", reduction="sum")
    inside = r2 <= max_r2
    coords = einops.rearrange(freq_grid[inside], "b zyx -> b zyx 1")
    coords = coords.to(weight.dtype)

    matrices = _prepare_matrices(
        symmetry_matrices.to(data.device),
        inv=False,
        zyx_matrices=zyx_matrices,
        dtype=weight.dtype,
    )
    logger.debug(
        f"symmetrising {int(inside.sum())} voxels over {len(matrices)} operators"
    )

    # indexing copies, the grids themselves stay unsummed until the end
    summed_data = data[inside]
    summed_weight = weight[inside]
    for matrix in matrices:
        rotated_coords = einops.rearrange(matrix @ coords, "b zyx 1 -> b zyx")

        # read samples in the redundant half transform from their partner
        conjugate_mask = rotated_coords[..., -1] < 0
        rotated_coords[conjugate_mask] *= -1
        rotated_coords = _frequencies_to_array_coordinates(rotated_coords, center=center)

        values = sample_image_3d(
            image=data, coordinates=rotated_coords, interpolation="trilinear"
        )
        values[conjugate_mask] = torch.conj(values[conjugate_mask])
        summed_data += values
        summed_weight += sample_image_3d(
            image=weight, coordinates=rotated_coords, interpolation="trilinear"
        )

    data[inside] = summed_data
    weight[inside] = summed_weight
    return data, weight
