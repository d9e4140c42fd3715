import einops
import torch
from torch_grid_utils import rfft_shape

from ._grids import _fft_layout_frequency_grid, _rfft_frequency_grid


def _rfft_shape(image_shape: tuple[int, ...]) -> tuple[int, ...]:
    return tuple(rfft_shape(image_shape))


def _frequencies_to_array_coordinates(
    frequencies: torch.Tensor, center: int
) -> torch.Tensor:
    """Convert logical frequencies into array coordinates in a centred rfft grid.

    Centred grids have their DC component at index `center` along every full
    dimension and at index 0 along the last (half transform) dimension, so
    only the full dimensions are offset.

    Parameters
    ----------
    frequencies: torch.Tensor
        `(..., d)` array of (possibly fractional) logical frequencies,
        ordered `zyx` with `x` the half transform dimension.
    center: int
        Array index of the DC component along the full dimensions.

    Returns
    -------
    coordinates: torch.Tensor
        `(..., d)` array of continuous array coordinates.
    """
    coordinates = frequencies.clone()
    coordinates[..., :-1] += center
    return coordinates


def _decenter(
    centered: torch.Tensor,
    pad_size: int,
    max_r2: float,
    dtype: torch.dtype | None = None,
) -> torch.Tensor:
    """Copy a centred half-Hermitian grid into an unshifted rfft layout.

    Values with `kp^2 + ip^2 + jp^2 <= max_r2` are copied into a zero filled
    array of shape `rfft_shape((pad_size,) * ndim)`, converting to `dtype`
    on the way (e.g. float32 weights into a float64 buffer).
    """
    ndim = centered.ndim
    dtype = centered.dtype if dtype is None else dtype
    center = centered.shape[0] // 2

    freq_grid = _fft_layout_frequency_grid(
        pad_size=pad_size, ndim=ndim, device=centered.device
    )  # (..., ndim)
    r2 = einops.reduce(freq_grid**2, "... f -> ...", reduction="sum")
    inside = (r2 <= max_r2) & torch.all(freq_grid[..., :-1].abs() <= center, dim=-1)
    inside = inside & (freq_grid[..., -1] < centered.shape[-1])

    # gather values from the centred grid at each in-support frequency
    indices = _frequencies_to_array_coordinates(freq_grid[inside], center=center)
    indices = indices.long()

    output = torch.zeros(
        size=_rfft_shape((pad_size,) * ndim), dtype=dtype, device=centered.device
    )
    output[inside] = centered[tuple(indices.unbind(dim=-1))].to(dtype)
    return output


def _support_mask(
    grid_shape: tuple[int, ...],
    max_r2: float,
    device: torch.device | None = None,
) -> torch.Tensor:
    """Boolean mask of the voxels of a centred rfft grid inside `max_r2`."""
    side = grid_shape[0]
    freq_grid = _rfft_frequency_grid(
        image_shape=(side,) * len(grid_shape), fftshift=True, device=device
    )
    r2 = einops.reduce(freq_grid**2, "... f -> ...", reduction="sum")
    return r2 <= max_r2
