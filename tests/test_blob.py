import numpy as np
import pytest
import torch
from scipy.special import iv

from torch_fourier_reconstruct import OutOfSupportError, TabulatedFourierBlob
from torch_fourier_reconstruct.blob import kaiser_fourier_value, kaiser_value


def test_kaiser_fourier_value_at_origin():
    radius, alpha = 3.8, 15.0
    value = kaiser_fourier_value(np.array([0.0]), radius=radius, alpha=alpha, order=0)
    expected = (2 * np.pi) ** 1.5 * radius**3 / iv(0, alpha) * iv(1.5, alpha) / alpha**1.5
    assert np.allclose(value, expected)


def test_kaiser_fourier_value_is_finite_across_branches():
    # s crosses alpha at w = alpha / (2 pi radius), sigma -> 0 there
    radius, alpha = 3.8, 15.0
    w_cross = alpha / (2 * np.pi * radius)
    w = np.array([0.0, 0.5 * w_cross, w_cross, 1.5 * w_cross, 0.49])
    values = kaiser_fourier_value(w, radius=radius, alpha=alpha, order=2)
    assert np.all(np.isfinite(values))
    assert values[0] > values[1] > values[2]


def test_kaiser_value_profile():
    r = np.array([0.0, 1.9, 3.8, 4.0])
    value = kaiser_value(r, radius=3.8, alpha=15.0, order=0)
    assert value[0] == pytest.approx(1.0)
    assert 0 < value[2] < value[1] < 1
    assert value[3] == 0


@pytest.mark.parametrize("order", [0, 2])
def test_fourier_value_is_transform_of_blob(order):
    radius, alpha = 3.8, 15.0
    r = torch.linspace(0, radius, 20001, dtype=torch.float64)
    blob = torch.as_tensor(kaiser_value(r.numpy(), radius, alpha, order))
    at_origin = kaiser_fourier_value(np.array([0.0]), radius, alpha, order)[0]
    for w in (0.0, 0.05, 0.1, 0.2):
        # radial form of the 3D Fourier transform
        integrand = 4 * np.pi * r**2 * blob * torch.sinc(2 * w * r)
        numeric = torch.trapezoid(integrand, r).item()
        expected = kaiser_fourier_value(np.array([w]), radius, alpha, order)[0]
        assert numeric == pytest.approx(expected, rel=1e-4, abs=1e-6 * at_origin)


def test_tabulated_blob_table():
    blob = TabulatedFourierBlob(radius=3.8, alpha=15, order=0, nr_elem=1000)
    assert len(blob) == 1000
    assert blob.sampling == pytest.approx(0.5 / 1000)
    w = torch.tensor([0.0, 0.1, 0.2])
    assert torch.allclose(blob.normalised(w)[0], torch.tensor(1.0, dtype=torch.float64))
    assert torch.all(torch.diff(blob(w)) < 0)


def test_tabulated_blob_is_zero_beyond_table():
    blob = TabulatedFourierBlob(radius=3.8)
    values = blob(torch.tensor([0.5, 0.6, -0.7]))
    assert torch.all(values == 0)


def test_tabulated_blob_is_even():
    blob = TabulatedFourierBlob(radius=3.8)
    w = torch.linspace(0, 0.45, 10)
    assert torch.equal(blob(w), blob(-w))


def test_tabulated_blob_invalid_arguments():
    with pytest.raises(OutOfSupportError):
        TabulatedFourierBlob(radius=-1)
    with pytest.raises(ValueError):
        TabulatedFourierBlob(radius=1.9, order=-1)
    with pytest.raises(ValueError):
        TabulatedFourierBlob(radius=1.9, nr_elem=0)
