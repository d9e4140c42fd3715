import torch
from pytest import fixture


def fftshifted_rfft(image: torch.Tensor) -> torch.Tensor:
    """rfft with the image centre at the array origin, full dims fftshifted."""
    dims = tuple(range(-image.ndim, 0))
    dft = torch.fft.fftshift(image, dim=dims)  # image center to array origin
    dft = torch.fft.rfftn(dft, dim=dims)
    return torch.fft.fftshift(dft, dim=dims[:-1])  # actual fftshift


def gaussian(shape: tuple[int, ...], sigma: float) -> torch.Tensor:
    grids = torch.meshgrid(
        *[torch.arange(n, dtype=torch.float64) - n // 2 for n in shape], indexing="ij"
    )
    r2 = sum(g**2 for g in grids)
    return torch.exp(-r2 / (2 * sigma**2))


@fixture
def cube() -> torch.Tensor:
    volume = torch.zeros((32, 32, 32))
    volume[8:24, 8:24, 8:24] = 1
    volume[16, 16, 16] = 32
    return volume


@fixture
def gaussian_image() -> torch.Tensor:
    return gaussian((32, 32), sigma=2).float()


@fixture
def gaussian_projection() -> torch.Tensor:
    # projection of a unit peak 3D gaussian with sigma 3 along any axis
    sigma = 3
    return (gaussian((32, 32), sigma=sigma) * (2 * torch.pi) ** 0.5 * sigma).float()


@fixture
def random_images() -> torch.Tensor:
    generator = torch.Generator().manual_seed(0)
    return torch.rand((6, 32, 32), generator=generator)
