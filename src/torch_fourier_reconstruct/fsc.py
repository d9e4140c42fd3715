"""Downsampled averages of padded grids and their Fourier shell correlation."""

import einops
import torch

from ._grids import _radial_shells, _rfft_frequency_grid
from .exceptions import DimensionMismatchError


def _round_half_away_from_zero(x: torch.Tensor) -> torch.Tensor:
    return torch.sign(x) * torch.floor(torch.abs(x) + 0.5)


def downsampled_average(
    data: torch.Tensor,
    weight: torch.Tensor,
    ori_size: int,
    padding_factor: int,
    r_max: int,
) -> torch.Tensor:
    """Average every `padding_factor^ndim` block of a padded grid into one voxel.

    Parameters
    ----------
    data: torch.Tensor
        Centred half-Hermitian padded grid.
    weight: torch.Tensor
        Weights of the same shape as `data`.
    ori_size: int
        Side length of the original box.
    padding_factor: int
        Oversampling of the padded grid.
    r_max: int
        Maximum frequency (original Fourier pixels) held by the grid.

    Returns
    -------
    average: torch.Tensor
        fftshifted rfft of an `ori_size` image or volume holding
        `sum(data) / sum(weight)` per block, zero where the weights sum to
        zero or beyond `r_max`.
    """
    if weight.shape != data.shape:
        raise DimensionMismatchError(
            f"weight shape {tuple(weight.shape)} differs from data shape {tuple(data.shape)}"
        )
    ndim = data.ndim
    side = data.shape[0]
    output_shape = (ori_size,) * (ndim - 1) + (ori_size // 2 + 1,)

    freq_grid = _rfft_frequency_grid(
        image_shape=(side,) * ndim, fftshift=True, device=data.device
    )
    r2, _ = _radial_shells(freq_grid)
    inside = r2 <= (padding_factor * r_max) ** 2

    # frequency of the output voxel each padded voxel falls into
    target = _round_half_away_from_zero(freq_grid[inside] / padding_factor)
    target_r2 = einops.reduce(target**2, "b f -> b", reduction="sum")
    keep = target_r2 <= r_max**2
    target = target[keep].long()
    target[..., :-1] = (target[..., :-1] + ori_size // 2) % ori_size
    flat_index = torch.zeros_like(target[..., 0])
    for dim, size in enumerate(output_shape):
        flat_index = flat_index * size + target[..., dim]

    n_voxels = 1
    for size in output_shape:
        n_voxels *= size
    sum_data = torch.zeros(n_voxels, dtype=data.dtype, device=data.device)
    sum_weight = torch.zeros(n_voxels, dtype=weight.dtype, device=data.device)
    sum_data.index_add_(0, flat_index, data[inside][keep])
    sum_weight.index_add_(0, flat_index, weight[inside][keep])

    average = torch.where(
        sum_weight > 0, sum_data / torch.clamp(sum_weight, min=1e-30), 0
    )
    return average.reshape(output_shape)


def downsampled_fourier_shell_correlation(
    average_1: torch.Tensor, average_2: torch.Tensor
) -> torch.Tensor:
    """Fourier shell correlation between two downsampled averages.

    Shells are `round(|f|)` over the non-redundant half transform, the result
    has `ori_size // 2 + 1` entries and is zero for shells where either
    average has no power.
    """
    if average_1.shape != average_2.shape:
        raise DimensionMismatchError(
            f"cannot correlate averages of shape {tuple(average_1.shape)} "
            f"and {tuple(average_2.shape)}"
        )
    ndim = average_1.ndim
    ori_size = average_1.shape[0]
    n_shells = ori_size // 2 + 1

    freq_grid = _rfft_frequency_grid(
        image_shape=(ori_size,) * ndim, fftshift=True, device=average_1.device
    )
    _, shells = _radial_shells(freq_grid)
    valid = shells < n_shells
    shells = shells[valid]
    average_1, average_2 = average_1[valid], average_2[valid]

    numerator = torch.real(average_1 * torch.conj(average_2)).to(torch.float64)
    power_1 = (torch.abs(average_1) ** 2).to(torch.float64)
    power_2 = (torch.abs(average_2) ** 2).to(torch.float64)

    def shell_sum(values: torch.Tensor) -> torch.Tensor:
        sums = torch.zeros(n_shells, dtype=torch.float64, device=values.device)
        return sums.index_add_(0, shells, values)

    numerator, power_1, power_2 = map(shell_sum, (numerator, power_1, power_2))
    denominator = torch.sqrt(power_1 * power_2)
    return torch.where(
        (power_1 > 0) & (power_2 > 0),
        numerator / torch.clamp(denominator, min=1e-300),
        0,
    )
