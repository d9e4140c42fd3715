import einops
import torch
from torch_image_interpolation import insert_into_image_2d, insert_into_image_3d

from .._dft_utils import _frequencies_to_array_coordinates, _support_mask
from ..fourier_grid import Interpolator

_LINEAR_MODES = {2: "bilinear", 3: "trilinear"}


def _r_max_from_grid(data: torch.Tensor, padding_factor: int) -> int:
    # centred grids have their DC at pad_r_max + 1
    return (data.shape[0] // 2 - 1) // padding_factor


def _prepare_matrices(
    rotation_matrices: torch.Tensor,
    inv: bool,
    zyx_matrices: bool,
    dtype: torch.dtype,
) -> torch.Tensor:
    rotation_matrices = rotation_matrices.to(torch.float64)
    if inv is True:
        rotation_matrices = torch.linalg.inv(rotation_matrices)

    # rotation matrices rotate xyz coordinates, make them rotate zyx coordinates
    # xyz:
    # [a b c] [x]   [ax + by + cz]   [x']
    # [d e f] [y]   [dx + ey + fz]   [y']
    # [g h i] [z] = [gx + hy + iz] = [z']
    #
    # zyx:
    # [i h g] [z]   [gx + hy + iz]   [z']
    # [f e d] [y]   [dx + ey + fz]   [y']
    # [c b a] [x] = [ax + by + cz] = [x']
    if not zyx_matrices:
        rotation_matrices = torch.flip(rotation_matrices, dims=(-2, -1))
    return rotation_matrices.to(dtype)


def _insert_fourier_samples(
    source_rfft: torch.Tensor,  # (..., *rfft_shape)
    source_frequencies: torch.Tensor,  # (*rfft_shape, d_src) zyx
    data: torch.Tensor,
    weight: torch.Tensor,
    rotation_matrices: torch.Tensor,  # (..., d, d) acting on zyx target coords
    padding_factor: int,
    r_max: int,
    sample_weights: torch.Tensor | None,
    interpolator: Interpolator,
    r_min_nn: float,
) -> tuple[torch.Tensor, torch.Tensor]:
    ndim = data.ndim
    device = data.device
    coordinate_dtype = weight.dtype

    # source Nyquist cutoff, only frequencies up to r_max take part
    source_radius = (
        einops.reduce(source_frequencies**2, "... f -> ...", reduction="sum") ** 0.5
    )
    freq_grid_mask = source_radius <= r_max
    valid_coords = source_frequencies[freq_grid_mask, ...]  # (b, zyx)
    valid_radius = source_radius[freq_grid_mask]  # (b, )
    valid_coords = einops.rearrange(valid_coords, "b zyx -> b zyx 1")
    valid_coords = valid_coords.to(coordinate_dtype)

    # get (..., b) array of data at each coordinate from the source rffts
    valid_data = source_rfft[..., freq_grid_mask].to(data.dtype)
    if sample_weights is not None:
        valid_weights = sample_weights[..., freq_grid_mask].to(weight.dtype)

    # add extra dim to rotation matrices for broadcasting
    rotation_matrices = padding_factor * rotation_matrices
    rotation_matrices = einops.rearrange(rotation_matrices, "... i j -> ... 1 i j")

    # rotate all valid coordinates by each rotation matrix and remove last dim
    rotated_coords = einops.rearrange(
        rotation_matrices @ valid_coords, pattern="... b zyx 1 -> ... b zyx"
    )

    # broadcast data and weights against the stack of rotations
    stack_shape = torch.broadcast_shapes(valid_data.shape, rotated_coords.shape[:-1])
    valid_data = torch.broadcast_to(valid_data, stack_shape).clone()
    rotated_coords = torch.broadcast_to(rotated_coords, (*stack_shape, ndim)).clone()
    if sample_weights is not None:
        valid_weights = torch.broadcast_to(valid_weights, stack_shape)

    # flip coordinates in redundant half transform and take conjugate value
    conjugate_mask = rotated_coords[..., -1] < 0
    rotated_coords[conjugate_mask] *= -1
    valid_data[conjugate_mask] = torch.conj(valid_data[conjugate_mask])

    # calculate positions in the centred grid from logical frequencies
    center = data.shape[0] // 2
    rotated_coords = _frequencies_to_array_coordinates(rotated_coords, center=center)

    # low resolution samples use nearest neighbour with the NEAREST interpolator
    use_nearest = torch.broadcast_to(valid_radius < r_min_nn, stack_shape)
    if interpolator is not Interpolator.NEAREST:
        use_nearest = torch.zeros_like(use_nearest)

    insert = insert_into_image_3d if ndim == 3 else insert_into_image_2d
    for mode, mode_mask in (("nearest", use_nearest), (_LINEAR_MODES[ndim], ~use_nearest)):
        if not torch.any(mode_mask):
            continue
        values = valid_data[mode_mask]
        coordinates = rotated_coords[mode_mask]
        if sample_weights is None:
            data, weight = insert(
                values=values,
                coordinates=coordinates,
                image=data,
                weights=weight,
                interpolation=mode,
            )
        else:
            mode_weights = valid_weights[mode_mask]
            data, _ = insert(
                values=values * mode_weights,
                coordinates=coordinates,
                image=data,
                interpolation=mode,
            )
            weight, _ = insert(
                values=mode_weights,
                coordinates=coordinates,
                image=weight,
                interpolation=mode,
            )

    # trilinear neighbours may fall just outside the live sphere of the grid
    grid_max_r2 = (data.shape[0] // 2 - 1) ** 2
    outside = ~_support_mask(data.shape, grid_max_r2, device=device)
    data[outside] = 0
    weight[outside] = 0
    return data, weight
