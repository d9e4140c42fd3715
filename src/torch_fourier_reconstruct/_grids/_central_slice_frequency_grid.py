import einops
import torch

from ._rfft_frequency_grid import _rfft_frequency_grid


def _central_slice_frequency_grid(
    image_shape: tuple[int, int],
    device: torch.device | None = None,
) -> torch.Tensor:
    # generate 2d grid of integer DFT sample frequencies, shape (h, w, 2)
    grid = _rfft_frequency_grid(image_shape=image_shape, fftshift=True, device=device)

    # get grid of same shape with all zeros, prepend as z coordinate
    zeros = torch.zeros(size=grid.shape[:-1], dtype=grid.dtype, device=device)
    central_slice_grid, _ = einops.pack([zeros, grid], pattern="h w *")  # (h, w, 3)
    return central_slice_grid
