import pytest
import torch
from scipy.stats import special_ortho_group

from conftest import fftshifted_rfft, gaussian
from torch_fourier_reconstruct import (
    BackProjector,
    DimensionMismatchError,
    Interpolator,
    ReconstructionError,
)

DEVICES = ["cpu"]
if torch.cuda.is_available():
    DEVICES.append("cuda")


@pytest.fixture(scope="module")
def rotation_matrices() -> torch.Tensor:
    return torch.tensor(special_ortho_group.rvs(dim=3, size=1000, random_state=42))


def fold_into_d2_asymmetric_unit(rotation_matrices: torch.Tensor) -> torch.Tensor:
    # left-multiply by the 2-fold (or identity) taking each view direction into x >= 0, z >= 0
    view_directions = rotation_matrices[..., :, 2]
    sign_x = torch.where(view_directions[..., 0] < 0, -1.0, 1.0).to(rotation_matrices.dtype)
    sign_z = torch.where(view_directions[..., 2] < 0, -1.0, 1.0).to(rotation_matrices.dtype)
    operators = torch.diag_embed(torch.stack([sign_x, sign_x * sign_z, sign_z], dim=-1))
    return operators @ rotation_matrices


def filled_backprojector(image, rotation_matrices, symmetry="c1", device="cpu"):
    backprojector = BackProjector(
        ori_size=32, ref_dim=3, symmetry=symmetry, padding_factor=2, device=device
    )
    backprojector.initialise_data_and_weight()
    backprojector.backproject(
        fftshifted_rfft(image.to(device)), rotation_matrices.to(device)
    )
    return backprojector


@pytest.mark.parametrize(
    "device",
    DEVICES,
)
def test_reconstruct_gaussian_c1(gaussian_projection, rotation_matrices, device):
    backprojector = filled_backprojector(
        gaussian_projection, rotation_matrices, device=device
    )
    result = backprojector.reconstruct()

    volume = result.volume
    assert device in str(volume.device)
    assert volume.shape == (32, 32, 32)
    # unit peak gaussian
    assert volume[16, 16, 16].item() == pytest.approx(1.0, rel=0.02)
    assert torch.argmax(volume).item() == 16 * 32 * 32 + 16 * 32 + 16


def test_fold_into_d2_asymmetric_unit(rotation_matrices):
    folded = fold_into_d2_asymmetric_unit(rotation_matrices)
    assert torch.all(folded[:, 0, 2] >= 0)
    assert torch.all(folded[:, 2, 2] >= 0)
    dets = torch.linalg.det(folded)
    assert torch.allclose(dets, torch.ones_like(dets))


def test_reconstruct_gaussian_d2(gaussian_projection, rotation_matrices):
    c1 = filled_backprojector(gaussian_projection, rotation_matrices).reconstruct()
    d2 = filled_backprojector(
        gaussian_projection,
        fold_into_d2_asymmetric_unit(rotation_matrices),
        symmetry="d2",
    ).reconstruct()

    assert d2.volume[16, 16, 16].item() == pytest.approx(1.0, rel=0.02)
    difference = torch.sqrt(torch.mean((d2.volume - c1.volume) ** 2))
    assert difference / torch.sqrt(torch.mean(c1.volume**2)) < 0.01


def test_half_map_fourier_shell_correlation(gaussian_projection, rotation_matrices):
    half_1 = filled_backprojector(gaussian_projection, rotation_matrices[:500])
    half_2 = filled_backprojector(gaussian_projection, rotation_matrices[500:])
    fsc = BackProjector.calculate_downsampled_fourier_shell_correlation(
        half_1.get_downsampled_average(), half_2.get_downsampled_average()
    )
    assert fsc.shape == (17,)
    assert fsc[0].item() == pytest.approx(1.0, abs=1e-6)
    assert torch.all(fsc[1:5] > 0.9)
    # noise free, so only interpolation error separates the halves
    assert torch.all(fsc[1:8] <= fsc[:7] + 1e-4)


def test_low_resolution_exchange(gaussian_projection, rotation_matrices):
    a = filled_backprojector(gaussian_projection, rotation_matrices[:100])
    b = filled_backprojector(gaussian_projection, rotation_matrices[100:200])
    original_b = b.data.clone()

    b.set_lowres_data_and_weight(*a.get_lowres_data_and_weight(4), lowres_r_max=4)
    r2 = (b.grid.frequency_grid() ** 2).sum(dim=-1)
    inner = r2 <= (b.padding_factor * 4) ** 2
    assert torch.equal(b.data[inner], a.data[inner])
    assert torch.equal(b.weight[inner], a.weight[inner])
    assert torch.equal(b.data[~inner], original_b[~inner])


def test_accumulators_reduce_by_addition(random_images, rotation_matrices):
    images = fftshifted_rfft(random_images)
    matrices = rotation_matrices[: len(images)]

    def accumulator():
        backprojector = BackProjector(ori_size=32, ref_dim=3)
        backprojector.initialise_data_and_weight(current_size=16)
        return backprojector

    everything, first, second = accumulator(), accumulator(), accumulator()
    everything.backproject(images, matrices)
    first.backproject(images[:3], matrices[:3])
    second.backproject(images[3:], matrices[3:])

    total = first + second
    assert torch.allclose(total.data, everything.data, atol=1e-3)
    assert torch.allclose(total.weight, everything.weight, atol=1e-5)
    # + leaves its operands untouched
    assert not torch.allclose(first.weight, everything.weight)

    first.add(second)
    assert torch.allclose(first.weight, everything.weight, atol=1e-5)


def test_add_incompatible_accumulators():
    a = BackProjector(ori_size=32, ref_dim=3)
    a.initialise_data_and_weight()
    b = BackProjector(ori_size=32, ref_dim=3)
    b.initialise_data_and_weight(current_size=16)
    with pytest.raises(DimensionMismatchError):
        a.add(b)
    with pytest.raises(TypeError):
        a.add(torch.zeros(3))


def test_set_2d_fourier_transform_dispatch(random_images, cube):
    image_rfft = fftshifted_rfft(random_images[0])

    backrotate_2d = BackProjector(ori_size=32, ref_dim=2)
    backrotate_2d.init_zeros()
    backrotate_2d.set_2d_fourier_transform(image_rfft, torch.eye(2))
    assert backrotate_2d.weight.sum() > 0

    backproject = BackProjector(ori_size=32, ref_dim=3, data_dim=2)
    backproject.init_zeros()
    backproject.set_2d_fourier_transform(image_rfft, torch.eye(3))
    assert backproject.weight.sum() > 0

    backrotate_3d = BackProjector(ori_size=32, ref_dim=3, data_dim=3)
    backrotate_3d.init_zeros()
    backrotate_3d.set_2d_fourier_transform(fftshifted_rfft(cube), torch.eye(3))
    assert backrotate_3d.weight.sum() > backproject.weight.sum()


def test_backprojector_dimension_errors(random_images):
    image_rfft = fftshifted_rfft(random_images[0])
    reference_2d = BackProjector(ori_size=32, ref_dim=2)
    reference_2d.initialise_data_and_weight()
    with pytest.raises(DimensionMismatchError):
        reference_2d.backproject(image_rfft, torch.eye(3))
    with pytest.raises(DimensionMismatchError):
        reference_2d.set_2d_fourier_transform(image_rfft, torch.eye(3))
    with pytest.raises(DimensionMismatchError):
        BackProjector(ori_size=32, ref_dim=2, data_dim=3)
    with pytest.raises(ValueError):
        BackProjector(ori_size=32, ref_dim=2, symmetry="c2")
    with pytest.raises(ValueError):
        BackProjector(ori_size=32, ref_dim=3, dtype=torch.complex32)


def test_backprojector_lifecycle(random_images):
    backprojector = BackProjector(
        ori_size=32, ref_dim=3, interpolator=Interpolator.NEAREST, dtype=torch.complex128
    )
    with pytest.raises(ReconstructionError):
        backprojector.backproject(fftshifted_rfft(random_images[0]), torch.eye(3))

    backprojector.initialise_data_and_weight()
    assert backprojector.weight.dtype == torch.float64
    assert backprojector.data.dtype == torch.complex128
    assert backprojector.weight.shape == backprojector.data.shape == (67, 67, 34)

    backprojector.backproject(fftshifted_rfft(random_images[0]).to(torch.complex128), torch.eye(3))
    clone = backprojector.clone()
    clone.weight[0, 0, 0] = 5
    assert backprojector.weight[0, 0, 0] == 0
    assert clone.grid is not backprojector.grid

    backprojector.clear()
    assert backprojector.r_max == 0
    assert backprojector.data.numel() == backprojector.weight.numel() == 0
    assert "BackProjector(ori_size=32" in repr(clone)
