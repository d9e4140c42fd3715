import pytest
import torch

from torch_fourier_reconstruct import (
    DimensionMismatchError,
    FourierGrid,
    OutOfSupportError,
    get_lowres_data_and_weight,
    set_lowres_data_and_weight,
)


def random_grids(seed: int, ref_dim: int = 3):
    grid = FourierGrid(ori_size=16, ref_dim=ref_dim, padding_factor=2)
    grid.initialise()
    generator = torch.Generator().manual_seed(seed)
    outside = ~grid.support_mask()
    data = torch.randn(grid.shape, dtype=torch.complex64, generator=generator)
    weight = torch.rand(grid.shape, generator=generator)
    data[outside] = 0
    weight[outside] = 0
    return data, weight, grid


@pytest.mark.parametrize("ref_dim", [2, 3])
def test_get_lowres_layout(ref_dim):
    data, weight, grid = random_grids(seed=0, ref_dim=ref_dim)
    lowres_data, lowres_weight = get_lowres_data_and_weight(
        data, weight, padding_factor=2, lowres_r_max=4
    )
    # laid out like a grid initialised for current_size = 8
    expected = FourierGrid(ori_size=16, ref_dim=ref_dim, padding_factor=2)
    expected.initialise(current_size=8)
    assert lowres_data.shape == expected.shape
    assert lowres_weight.shape == expected.shape

    inside = expected.support_mask()
    assert torch.all(lowres_data[~inside] == 0)
    assert torch.all(lowres_weight[~inside] == 0)

    # the DC component sits at the centre of both
    c, lc = grid.center, expected.center
    dc = (c,) * (ref_dim - 1) + (0,)
    lowres_dc = (lc,) * (ref_dim - 1) + (0,)
    assert lowres_data[lowres_dc] == data[dc]
    shifted = (c + 3,) * (ref_dim - 1) + (2,)
    lowres_shifted = (lc + 3,) * (ref_dim - 1) + (2,)
    assert lowres_weight[lowres_shifted] == weight[shifted]


def test_lowres_exchange():
    data_a, weight_a, grid = random_grids(seed=1)
    data_b, weight_b, _ = random_grids(seed=2)
    original_b = data_b.clone()

    lowres_data, lowres_weight = get_lowres_data_and_weight(
        data_a, weight_a, padding_factor=2, lowres_r_max=4
    )
    set_lowres_data_and_weight(
        data_b, weight_b, lowres_data, lowres_weight, padding_factor=2, lowres_r_max=4
    )

    r2 = (grid.frequency_grid() ** 2).sum(dim=-1)
    inner = r2 <= (2 * 4) ** 2
    assert torch.equal(data_b[inner], data_a[inner])
    assert torch.equal(weight_b[inner], weight_a[inner])
    assert torch.equal(data_b[~inner], original_b[~inner])


def test_lowres_errors():
    data, weight, _ = random_grids(seed=3)
    with pytest.raises(OutOfSupportError):
        get_lowres_data_and_weight(data, weight, padding_factor=2, lowres_r_max=9)
    with pytest.raises(OutOfSupportError):
        get_lowres_data_and_weight(data, weight, padding_factor=2, lowres_r_max=-1)

    lowres_data, lowres_weight = get_lowres_data_and_weight(
        data, weight, padding_factor=2, lowres_r_max=4
    )
    with pytest.raises(DimensionMismatchError):
        set_lowres_data_and_weight(
            data, weight, lowres_data, lowres_weight, padding_factor=2, lowres_r_max=3
        )
    with pytest.raises(DimensionMismatchError):
        set_lowres_data_and_weight(
            data, weight, lowres_data[:-1], lowres_weight, padding_factor=2, lowres_r_max=4
        )
