"""Gridding-corrected Wiener/MAP reconstruction from accumulated grids."""

import contextlib
import enum
import logging
from dataclasses import dataclass
from typing import NamedTuple

import einops
import torch
from torch_grid_utils import fftfreq_grid

from ._dft_utils import _decenter
from ._grids import _fft_layout_frequency_grid, _radial_shells, _rfft_frequency_grid
from .blob import TabulatedFourierBlob
from .exceptions import DimensionMismatchError
from .fourier_grid import Interpolator
from .symmetrise import enforce_hermitian_symmetry, symmetrise

logger = logging.getLogger(__name__)

WEIGHT_EPS = 1e-20
MAP_EPS = 1e-10


class WholeMapPreweight(enum.Enum):
    """Preweighting of reconstructions from the full (not half) data set."""

    FULL = "full"
    HALVE = "halve"
    SKIP = "skip"


@dataclass
class ReconstructConfig:
    max_iter_preweight: int = 10
    do_map: bool = False
    tau2_fudge: float = 1.0
    normalise: float = 1.0
    update_tau2_with_fsc: bool = False
    is_whole_instead_of_half: bool = False
    whole_map_preweight: WholeMapPreweight = WholeMapPreweight.FULL
    minres_map: int = -1
    preweight_tolerance: float = 1e-3
    nr_threads: int | None = None

    def __post_init__(self):
        if self.max_iter_preweight < 0:
            raise ValueError(
                f"max_iter_preweight must be >= 0, got {self.max_iter_preweight}"
            )
        if self.tau2_fudge <= 0:
            raise ValueError(f"tau2_fudge must be > 0, got {self.tau2_fudge}")
        if self.normalise == 0:
            raise ValueError("normalise must be non-zero")
        if self.preweight_tolerance <= 0:
            raise ValueError(
                f"preweight_tolerance must be > 0, got {self.preweight_tolerance}"
            )
        if self.nr_threads is not None and self.nr_threads < 1:
            raise ValueError(f"nr_threads must be >= 1, got {self.nr_threads}")
        self.whole_map_preweight = WholeMapPreweight(self.whole_map_preweight)


class Reconstruction(NamedTuple):
    volume: torch.Tensor
    tau2: torch.Tensor
    sigma2: torch.Tensor
    evidence_vs_prior: torch.Tensor
    preweight_residual: float


@contextlib.contextmanager
def _num_threads(nr_threads: int | None):
    if nr_threads is None:
        yield
        return
    previous = torch.get_num_threads()
    torch.set_num_threads(nr_threads)
    try:
        yield
    finally:
        torch.set_num_threads(previous)


def _shell_sum(values: torch.Tensor, shells: torch.Tensor, n_shells: int) -> torch.Tensor:
    sums = torch.zeros(n_shells, dtype=torch.float64, device=values.device)
    return sums.index_add_(0, shells, values.to(torch.float64))


def convolute_blob_real_space(
    fourier: torch.Tensor,
    blob: TabulatedFourierBlob,
    pad_size: int,
) -> torch.Tensor:
    """Convolve an unshifted rfft of a padded box with the blob transform.

    The convolution is done by multiplying the real-space box by the
    normalised blob profile at radius `r / pad_size`, which is zero beyond
    half the box.
    """
    ndim = fourier.ndim
    image_shape = (pad_size,) * ndim
    real = torch.fft.irfftn(fourier, s=image_shape)
    radius = fftfreq_grid(
        image_shape=image_shape, rfft=False, fftshift=False, norm=True, device=real.device
    )
    real = real * blob.normalised(radius).to(real.dtype)
    return torch.fft.rfftn(real, s=image_shape)


def preweight(
    weight: torch.Tensor,  # unshifted rfft layout of the padded box
    support: torch.Tensor,
    blob: TabulatedFourierBlob,
    pad_size: int,
    max_iter: int,
    tolerance: float = 1e-3,
) -> tuple[torch.Tensor, float]:
    """Estimate `F` such that `(F * W) conv blob = 1` on the support.

    Parameters
    ----------
    weight: torch.Tensor
        Real weights in the unshifted rfft layout of the padded box.
    support: torch.Tensor
        Boolean mask of the live frequencies.
    blob: TabulatedFourierBlob
        Gridding kernel.
    pad_size: int
        Side length of the padded box.
    max_iter: int
        Maximum number of multiplicative updates.
    tolerance: float
        Stop once `max |(F * W) conv blob - 1|` over weighted support voxels
        falls below this value.

    Returns
    -------
    preweight, residual: tuple[torch.Tensor, float]
        The preweighting array and the residual reached.
    """
    weight = weight.to(torch.float64)
    checked = support & (weight > 0)
    fweight = support.to(torch.float64)
    residual = float("inf")
    for iteration in range(max_iter + 1):
        convolved = torch.abs(
            convolute_blob_real_space(fweight * weight, blob=blob, pad_size=pad_size)
        )
        if torch.any(checked):
            residual = torch.max(torch.abs(convolved[checked] - 1)).item()
        else:
            residual = 0.0
        logger.debug(f"preweight iteration {iteration}: residual {residual:.3e}")
        if residual < tolerance or iteration == max_iter:
            break
        fweight = torch.where(
            support & (convolved > WEIGHT_EPS),
            fweight / torch.clamp(convolved, min=WEIGHT_EPS),
            0,
        )
    if residual >= tolerance:
        logger.warning(
            f"preweighting did not converge in {max_iter} iterations "
            f"(residual {residual:.3e}, tolerance {tolerance:.1e})"
        )
    return fweight, residual


def _noise_per_shell(
    weight: torch.Tensor,
    shells: torch.Tensor,
    inside: torch.Tensor,
    n_shells: int,
    oversampling: float,
) -> tuple[torch.Tensor, torch.Tensor]:
    counts = _shell_sum(torch.ones_like(weight[inside]), shells[inside], n_shells)
    sum_weight = _shell_sum(oversampling * weight[inside], shells[inside], n_shells)
    sigma2 = torch.where(
        sum_weight > 0, counts / torch.clamp(sum_weight, min=WEIGHT_EPS), 0
    )
    return sigma2, sum_weight


def _tau2_from_fsc(
    fsc: torch.Tensor,
    sigma2: torch.Tensor,
    tau2_fudge: float,
    is_whole_instead_of_half: bool,
) -> tuple[torch.Tensor, torch.Tensor]:
    fsc = torch.clamp(fsc.to(torch.float64), min=0.001, max=0.999)
    if is_whole_instead_of_half:
        # the full data set carries twice the signal of each half set
        fsc = torch.clamp(torch.sqrt(2 * fsc / (fsc + 1)), max=0.999)
    ssnr = fsc / (1 - fsc)
    return tau2_fudge * ssnr * sigma2, ssnr


def _per_shell(values: torch.Tensor | None, n_shells: int, name: str) -> torch.Tensor | None:
    if values is None:
        return None
    values = torch.as_tensor(values, dtype=torch.float64).flatten()
    if values.shape[0] < n_shells:
        raise DimensionMismatchError(
            f"{name} needs at least {n_shells} shells, got {values.shape[0]}"
        )
    return values[:n_shells]


def _gridding_correct(volume: torch.Tensor, all_nearest: bool) -> torch.Tensor:
    radius = fftfreq_grid(
        image_shape=volume.shape,
        rfft=False,
        fftshift=True,
        norm=True,
        device=volume.device,
    )
    sinc = torch.sinc(radius).to(volume.dtype)
    return volume / sinc if all_nearest else volume / sinc**2


def reconstruct(
    data: torch.Tensor,
    weight: torch.Tensor,
    ori_size: int,
    padding_factor: int,
    r_max: int,
    blob: TabulatedFourierBlob,
    symmetry_matrices: torch.Tensor | None = None,
    interpolator: Interpolator = Interpolator.TRILINEAR,
    r_min_nn: float = 10,
    tau2: torch.Tensor | None = None,
    fsc: torch.Tensor | None = None,
    config: ReconstructConfig | None = None,
) -> Reconstruction:
    """Reconstruct a real-space image or volume from accumulated grids.

    `data` and `weight` are symmetrised and made Hermitian in place before
    being preweighted and inverse transformed, so they can no longer be used
    for insertion afterwards; clone them first when that is needed.

    Parameters
    ----------
    data: torch.Tensor
        Centred half-Hermitian padded grid of summed samples.
    weight: torch.Tensor
        Summed weights, same shape as `data`.
    ori_size: int
        Side length of the output box.
    padding_factor: int
        Oversampling of the padded grid.
    r_max: int
        Maximum frequency (original Fourier pixels) held by the grid.
    blob: TabulatedFourierBlob
        Gridding kernel used for preweighting.
    symmetry_matrices: torch.Tensor | None
        `(n, 3, 3)` non-identity point-group rotations (xyz), 3D only.
    interpolator: Interpolator
        Interpolator used during insertion, selects the gridding correction.
    r_min_nn: float
        Nearest neighbour radius used during insertion.
    tau2: torch.Tensor | None
        Prior signal power per shell.
    fsc: torch.Tensor | None
        Fourier shell correlation used to estimate `tau2` when
        `config.update_tau2_with_fsc` is set.
    config: ReconstructConfig | None
        Reconstruction parameters, defaults to `ReconstructConfig()`.

    Returns
    -------
    reconstruction: Reconstruction
        Output box of side `ori_size`, effective `tau2`, noise power
        `sigma2`, `evidence_vs_prior` per shell and the preweighting
        residual (`nan` when preweighting was skipped).
    """
    config = ReconstructConfig() if config is None else config
    ndim = data.ndim
    if weight.shape != data.shape:
        raise DimensionMismatchError(
            f"weight shape {tuple(weight.shape)} differs from data shape {tuple(data.shape)}"
        )
    expected_side = 2 * (padding_factor * r_max + 1) + 1
    if data.shape[0] != expected_side:
        raise DimensionMismatchError(
            f"grid of side {data.shape[0]} does not hold r_max={r_max} "
            f"at padding factor {padding_factor} (expected side {expected_side})"
        )
    if tau2 is not None and torch.any(torch.as_tensor(tau2) < 0):
        raise ValueError("tau2 must be non-negative")

    pad_size = padding_factor * ori_size
    max_r2 = (padding_factor * r_max) ** 2
    oversampling = float(padding_factor**ndim)
    n_shells = ori_size // 2 + 1

    with _num_threads(config.nr_threads):
        if symmetry_matrices is not None and len(symmetry_matrices) > 0:
            if ndim != 3:
                raise DimensionMismatchError("symmetry requires a 3D reference grid")
            symmetrise(data, weight, symmetry_matrices, max_r2=max_r2)
        enforce_hermitian_symmetry(data, weight)

        freq_grid = _rfft_frequency_grid(
            image_shape=data.shape[:1] * ndim, fftshift=True, device=data.device
        )
        r2, shells = _radial_shells(freq_grid, padding_factor=padding_factor)
        inside = (r2 <= max_r2) & (shells < n_shells)
        sigma2, sum_weight = _noise_per_shell(
            weight, shells, inside, n_shells, oversampling
        )
        empty_shells = (sum_weight == 0)[: r_max + 1].nonzero().flatten().tolist()
        if empty_shells:
            logger.warning(f"shells without weight inside r_max: {empty_shells}")

        tau2 = _per_shell(tau2, n_shells, "tau2")
        evidence_vs_prior = torch.zeros(n_shells, dtype=torch.float64, device=data.device)
        if config.update_tau2_with_fsc:
            fsc = _per_shell(fsc, n_shells, "fsc")
            if fsc is None:
                raise ValueError("update_tau2_with_fsc requires an fsc")
            tau2_eff, evidence_vs_prior = _tau2_from_fsc(
                fsc.to(data.device),
                sigma2,
                config.tau2_fudge,
                config.is_whole_instead_of_half,
            )
        elif tau2 is not None:
            tau2_eff = config.tau2_fudge * tau2.to(data.device)
        elif config.do_map:
            raise ValueError("do_map requires either tau2 or fsc")
        else:
            tau2_eff = torch.zeros(n_shells, dtype=torch.float64, device=data.device)

        # per-shell Wiener factor tau2 / (tau2 + sigma2), unregularised below minres_map
        wiener = None
        if config.do_map:
            wiener = torch.where(
                tau2_eff + sigma2 > 0,
                tau2_eff / torch.clamp(tau2_eff + sigma2, min=MAP_EPS),
                0,
            )
            wiener[: max(config.minres_map, 0)] = 1
            evidence_vs_prior = torch.where(
                sigma2 > 0, tau2_eff / torch.clamp(sigma2, min=MAP_EPS), 0
            )
            logger.debug(f"map filter per shell: {wiener.tolist()}")

        # shells without weight carry no evidence
        evidence_vs_prior = torch.where(sum_weight > 0, evidence_vs_prior, 0)
        evidence_vs_prior[r_max + 1 :] = 0

        # preweighting in double precision on the FFT layout of the padded box
        fft_grid = _fft_layout_frequency_grid(pad_size, ndim=ndim, device=data.device)
        support = (
            einops.reduce(fft_grid**2, "... f -> ...", reduction="sum") <= max_r2
        )
        fweight_input = _decenter(weight, pad_size, max_r2, dtype=torch.float64)
        skip = (
            config.is_whole_instead_of_half
            and config.whole_map_preweight is WholeMapPreweight.SKIP
        )
        if skip:
            fweight = torch.where(
                support & (fweight_input > WEIGHT_EPS),
                1 / torch.clamp(fweight_input, min=WEIGHT_EPS),
                0,
            )
            residual = float("nan")
        else:
            max_iter = config.max_iter_preweight
            if (
                config.is_whole_instead_of_half
                and config.whole_map_preweight is WholeMapPreweight.HALVE
            ):
                max_iter = max(1, max_iter // 2)
            fweight, residual = preweight(
                fweight_input,
                support=support,
                blob=blob,
                pad_size=pad_size,
                max_iter=max_iter,
                tolerance=config.preweight_tolerance,
            )

        fdata = _decenter(data, pad_size, max_r2, dtype=torch.complex128) * fweight
        if wiener is not None:
            voxel_filter = torch.zeros_like(weight, dtype=torch.float64)
            voxel_filter[inside] = wiener[shells[inside]]
            fdata = fdata * _decenter(voxel_filter, pad_size, max_r2, dtype=torch.float64)

        # back to real space, move the box centre from the origin to pad_size // 2
        image_shape = (pad_size,) * ndim
        volume = torch.fft.irfftn(fdata, s=image_shape)
        volume = torch.fft.fftshift(volume, dim=tuple(range(ndim)))

        all_nearest = interpolator is Interpolator.NEAREST and r_min_nn > r_max
        volume = _gridding_correct(volume, all_nearest=all_nearest)

        # mask to the inscribed sphere of the original box, then window
        radius = fftfreq_grid(
            image_shape=image_shape,
            rfft=False,
            fftshift=True,
            norm=True,
            device=volume.device,
        ) * pad_size
        volume[radius > ori_size / 2] = 0
        start = (pad_size - ori_size) // 2
        window = (slice(start, start + ori_size),) * ndim
        volume = volume[window] / config.normalise
        volume = volume.to(weight.dtype).contiguous()

        if config.update_tau2_with_fsc:
            spectrum = torch.fft.rfftn(volume.to(torch.float64), norm="forward")
            spectrum = torch.fft.fftshift(spectrum, dim=tuple(range(ndim - 1)))
            ori_grid = _rfft_frequency_grid(
                image_shape=(ori_size,) * ndim, fftshift=True, device=volume.device
            )
            _, ori_shells = _radial_shells(ori_grid)
            in_range = ori_shells < n_shells
            power = _shell_sum(
                torch.abs(spectrum[in_range]) ** 2, ori_shells[in_range], n_shells
            )
            counts = _shell_sum(
                torch.ones_like(ori_shells[in_range], dtype=torch.float64),
                ori_shells[in_range],
                n_shells,
            )
            # factor 2 for the two dimensions of the complex plane
            tau2_eff = config.tau2_fudge * power / torch.clamp(counts, min=1) / 2

    return Reconstruction(
        volume=volume,
        tau2=tau2_eff,
        sigma2=sigma2,
        evidence_vs_prior=evidence_vs_prior,
        preweight_residual=residual,
    )
