"""Exchange of the low resolution sphere between accumulated grids."""

import torch

from ._dft_utils import _support_mask
from .exceptions import DimensionMismatchError, OutOfSupportError


def _lowres_shape(ndim: int, padding_factor: int, lowres_r_max: int) -> tuple[int, ...]:
    center = padding_factor * lowres_r_max + 1
    return (2 * center + 1,) * (ndim - 1) + (center + 1,)


def _lowres_slices(
    data: torch.Tensor, padding_factor: int, lowres_r_max: int
) -> tuple[slice, ...]:
    if lowres_r_max < 0:
        raise OutOfSupportError(f"lowres_r_max must be >= 0, got {lowres_r_max}")
    center = data.shape[0] // 2
    lowres_center = padding_factor * lowres_r_max + 1
    if lowres_center > center:
        raise OutOfSupportError(
            f"lowres_r_max ({lowres_r_max}) exceeds the radius held by the grid "
            f"({(center - 1) // padding_factor})"
        )
    full = slice(center - lowres_center, center + lowres_center + 1)
    return (full,) * (data.ndim - 1) + (slice(0, lowres_center + 1),)


def get_lowres_data_and_weight(
    data: torch.Tensor,
    weight: torch.Tensor,
    padding_factor: int,
    lowres_r_max: int,
) -> tuple[torch.Tensor, torch.Tensor]:
    """Copy the sphere of radius `padding_factor * lowres_r_max` out of a grid.

    The returned arrays are laid out like a grid initialised for
    `current_size = 2 * lowres_r_max`, with voxels outside the sphere zeroed.
    """
    if weight.shape != data.shape:
        raise DimensionMismatchError(
            f"weight shape {tuple(weight.shape)} differs from data shape {tuple(data.shape)}"
        )
    slices = _lowres_slices(data, padding_factor, lowres_r_max)
    lowres_data = data[slices].clone()
    lowres_weight = weight[slices].clone()

    outside = ~_support_mask(
        lowres_data.shape, (padding_factor * lowres_r_max) ** 2, device=data.device
    )
    lowres_data[outside] = 0
    lowres_weight[outside] = 0
    return lowres_data, lowres_weight


def set_lowres_data_and_weight(
    data: torch.Tensor,
    weight: torch.Tensor,
    lowres_data: torch.Tensor,
    lowres_weight: torch.Tensor,
    padding_factor: int,
    lowres_r_max: int,
) -> tuple[torch.Tensor, torch.Tensor]:
    """Overwrite the sphere of radius `padding_factor * lowres_r_max` in place."""
    expected_shape = _lowres_shape(data.ndim, padding_factor, lowres_r_max)
    for name, array in (("lowres_data", lowres_data), ("lowres_weight", lowres_weight)):
        if tuple(array.shape) != expected_shape:
            raise DimensionMismatchError(
                f"{name} must have shape {expected_shape} for lowres_r_max="
                f"{lowres_r_max}, got {tuple(array.shape)}"
            )
    slices = _lowres_slices(data, padding_factor, lowres_r_max)

    inside = _support_mask(
        expected_shape, (padding_factor * lowres_r_max) ** 2, device=data.device
    )
    data_view = data[slices]
    weight_view = weight[slices]
    data_view[inside] = lowres_data.to(device=data.device, dtype=data.dtype)[inside]
    weight_view[inside] = lowres_weight.to(device=weight.device, dtype=weight.dtype)[
        inside
    ]
    return data, weight
