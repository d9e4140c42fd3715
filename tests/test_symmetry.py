import math

import pytest
import torch

from torch_fourier_reconstruct import SymmetryGroup


@pytest.mark.parametrize(
    "symbol, order",
    [("c1", 1), ("C4", 4), ("c7", 7), ("d2", 4), ("D5", 10), ("t", 12), ("O", 24), ("i", 60)],
)
def test_group_order(symbol, order):
    group = SymmetryGroup.parse(symbol)
    assert group.order == order
    assert len(group) == order - 1
    assert group.matrices.shape == (order - 1, 3, 3)


def test_identity_group():
    assert len(SymmetryGroup.parse(None)) == 0
    assert SymmetryGroup.parse(None) == SymmetryGroup.parse("c1")


def test_matrices_are_rotations():
    matrices = SymmetryGroup.parse("i").matrices
    eye = torch.eye(3, dtype=torch.float64).expand_as(matrices)
    assert torch.allclose(matrices @ matrices.transpose(-1, -2), eye, atol=1e-10)
    assert torch.allclose(torch.linalg.det(matrices), torch.ones(len(matrices), dtype=torch.float64))


def test_identity_is_excluded():
    matrices = SymmetryGroup.parse("o").matrices
    eye = torch.eye(3, dtype=torch.float64)
    assert not any(torch.allclose(m, eye) for m in matrices)


def test_cyclic_group_is_about_z():
    matrices = SymmetryGroup.parse("c6").matrices
    z = torch.tensor([0.0, 0.0, 1.0], dtype=torch.float64)
    assert torch.allclose(matrices @ z, z.expand(len(matrices), 3), atol=1e-10)


def test_parse_passes_groups_through():
    group = SymmetryGroup("D", 3)
    assert SymmetryGroup.parse(group) is group
    assert str(group) == "D3"
    assert repr(group) == "SymmetryGroup('D3')"


@pytest.mark.parametrize("symbol", ["", "x3", "c", "dd", "i6", "i0", "ix", "t2", "c0"])
def test_invalid_symbols(symbol):
    with pytest.raises(ValueError):
        SymmetryGroup.parse(symbol)


def test_invalid_type():
    with pytest.raises(TypeError):
        SymmetryGroup.parse(4)


PHI = (1 + 5**0.5) / 2
TILT = math.atan2(1, PHI)


def _unit(*xyz):
    axis = torch.tensor(xyz, dtype=torch.float64)
    return axis / torch.linalg.norm(axis)


def _has_rotation_about(matrices, axis, fold):
    trace = 1 + 2 * math.cos(2 * math.pi / fold)
    fixes_axis = torch.all(torch.isclose(matrices @ axis, axis, atol=1e-8), dim=-1)
    traces = torch.einsum("nii->n", matrices)
    turns = torch.isclose(traces, torch.tensor(trace, dtype=torch.float64), atol=1e-8)
    return bool(torch.any(fixes_axis & turns))


@pytest.mark.parametrize(
    "symbol, axes",
    [
        ("i1", [((1, 0, 0), 2), ((0, 1, 0), 2), ((0, 0, 1), 2), ((0, 1, PHI), 5)]),
        ("i2", [((1, 0, 0), 2), ((0, 1, 0), 2), ((0, 0, 1), 2), ((1, 0, PHI), 5)]),
        ("i3", [((0, 0, 1), 5), ((-math.sin(TILT), 0, math.cos(TILT)), 2)]),
        ("i4", [((0, 0, 1), 5), ((math.sin(TILT), 0, math.cos(TILT)), 2)]),
        ("i5", [((0, 0, 1), 5), ((1, 0, 0), 2)]),
    ],
)
def test_icosahedral_settings(symbol, axes):
    group = SymmetryGroup.parse(symbol)
    assert group.order == 60
    assert group.symbol == symbol.upper()
    for axis, fold in axes:
        assert _has_rotation_about(group.matrices, _unit(*axis), fold)


def test_icosahedral_settings_differ():
    i1 = SymmetryGroup.parse("i1").matrices
    i2 = SymmetryGroup.parse("i2").matrices
    assert _has_rotation_about(i2, _unit(1, 0, PHI), 5)
    assert not _has_rotation_about(i1, _unit(1, 0, PHI), 5)


def test_plain_icosahedral_symbol_is_second_setting():
    assert SymmetryGroup.parse("I") == SymmetryGroup.parse("i2")
    assert torch.allclose(
        SymmetryGroup.parse("i").matrices, SymmetryGroup.parse("I2").matrices
    )
