import einops
import torch
from torch_grid_utils import fftfreq_grid


def _rfft_frequency_grid(
    image_shape: tuple[int, ...],
    fftshift: bool = True,
    device: torch.device | None = None,
) -> torch.Tensor:
    """Integer DFT sample frequencies of an rfft.

    Frequencies are in DFT index units (`fftfreq * n`) rather than cycles per
    pixel, ordered `zyx` (or `yx`), with the last dimension being the
    non-redundant half transform.

    Parameters
    ----------
    image_shape: tuple[int, ...]
        Shape of the real-space image or volume the rfft was computed from.
        Sides may be odd, e.g. for the centred grids of the accumulator.
    fftshift: bool
        Whether the full (non-half) dimensions are fftshifted.
    device: torch.device | None
        Device on which the grid is allocated.

    Returns
    -------
    grid: torch.Tensor
        `(*rfft_shape, ndim)` array of integer valued frequencies.
    """
    grid = fftfreq_grid(image_shape=image_shape, rfft=True, device=device)
    grid = grid * torch.as_tensor(image_shape, dtype=grid.dtype, device=device)
    grid = torch.round(grid)
    if fftshift is True:
        full_dims = tuple(range(len(image_shape) - 1))
        grid = torch.fft.fftshift(grid, dim=full_dims)
    return grid


def _fft_layout_frequency_grid(
    pad_size: int,
    ndim: int,
    device: torch.device | None = None,
) -> torch.Tensor:
    """Integer frequencies of an unshifted rfft of a `pad_size` cube/square."""
    return _rfft_frequency_grid(
        image_shape=(pad_size,) * ndim, fftshift=False, device=device
    )


def _radial_shells(
    frequency_grid: torch.Tensor, padding_factor: int = 1
) -> tuple[torch.Tensor, torch.Tensor]:
    """Squared radius and resolution shell index of each frequency.

    Shell indices are `round(|f| / padding_factor)`, rounded half away from
    zero.
    """
    r2 = einops.reduce(frequency_grid**2, "... f -> ...", reduction="sum")
    shells = torch.floor(torch.sqrt(r2) / padding_factor + 0.5).long()
    return r2, shells
