"""Tabulated Fourier transform of a Kaiser-Bessel blob."""

import logging

import numpy as np
import torch
from scipy.special import gamma, iv, jv

from .exceptions import OutOfSupportError

logger = logging.getLogger(__name__)


def kaiser_value(r: np.ndarray, radius: float, alpha: float, order: int) -> np.ndarray:
    """Kaiser-Bessel blob at distance `r` from its centre, zero beyond `radius`."""
    r = np.abs(np.asarray(r, dtype=np.float64))
    taper = np.sqrt(np.clip(1 - (r / radius) ** 2, 0, None))
    value = taper**order * iv(order, alpha * taper) / iv(order, alpha)
    return np.where(r <= radius, value, 0.0)


def kaiser_fourier_value(
    w: np.ndarray, radius: float, alpha: float, order: int
) -> np.ndarray:
    """Fourier transform of a 3D Kaiser-Bessel blob.

    Parameters
    ----------
    w: np.ndarray
        Spatial frequency (cycles per sample of the grid the blob lives on).
    radius: float
        Blob radius in samples.
    alpha: float
        Taper parameter of the blob.
    order: int
        Order of the blob (0 gives a discontinuous edge, 2 a smooth one).

    Returns
    -------
    values: np.ndarray
        Blob transform evaluated at `w`.
    """
    w = np.abs(np.asarray(w, dtype=np.float64))
    nu = order + 1.5
    s = 2 * np.pi * radius * w
    sigma = np.sqrt(np.abs(alpha**2 - s**2))
    scale = (2 * np.pi) ** 1.5 * radius**3 * alpha**order / iv(order, alpha)

    # I_nu(sigma) / sigma^nu tends to 1 / (2^nu Gamma(nu + 1)) as sigma -> 0
    limit = 1.0 / (2**nu * gamma(nu + 1))
    safe_sigma = np.where(sigma > 1e-8, sigma, 1.0)
    bessel = np.where(s > alpha, jv(nu, safe_sigma), iv(nu, safe_sigma))
    ratio = np.where(sigma > 1e-8, bessel / safe_sigma**nu, limit)
    return scale * ratio


class TabulatedFourierBlob:
    """Lookup table of the blob transform over normalised radii `[0, 0.5)`.

    Multiplying a real-space array by this profile convolves its Fourier
    transform with the blob, which is how gridding weights are smoothed
    during preweighting.
    """

    def __init__(
        self,
        radius: float = 1.9,
        alpha: float = 15.0,
        order: int = 0,
        nr_elem: int = 10000,
    ):
        if radius < 0:
            raise OutOfSupportError(f"blob radius must be >= 0, got {radius}")
        if order < 0:
            raise ValueError(f"blob order must be >= 0, got {order}")
        if nr_elem <= 0:
            raise ValueError(f"nr_elem must be > 0, got {nr_elem}")
        self.radius = float(radius)
        self.alpha = float(alpha)
        self.order = int(order)
        self.sampling = 0.5 / nr_elem

        w = np.arange(nr_elem) * self.sampling
        self.table = torch.as_tensor(
            kaiser_fourier_value(w, self.radius, self.alpha, self.order)
        )
        logger.debug(
            f"tabulated blob transform: radius={self.radius}, alpha={self.alpha}, "
            f"order={self.order}, {nr_elem} bins"
        )

    def __len__(self) -> int:
        return self.table.shape[0]

    def __call__(self, w: torch.Tensor) -> torch.Tensor:
        idx = (torch.abs(w) / self.sampling).long()
        inside = idx < len(self)
        table = self.table.to(w.device)
        values = torch.zeros_like(w, dtype=table.dtype)
        values[inside] = table[idx[inside]]
        return values

    def normalised(self, w: torch.Tensor) -> torch.Tensor:
        return self(w) / self.table[0]
