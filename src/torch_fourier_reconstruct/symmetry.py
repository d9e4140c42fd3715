"""Point-group symmetry operators."""

import logging

import numpy as np
import torch
from scipy.spatial.transform import Rotation

logger = logging.getLogger(__name__)

_GROUP_TYPES = ("C", "D", "T", "O", "I")

_PHI = (1 + np.sqrt(5)) / 2
# angle between the z axis and the nearest 5-fold in the I2 setting
_I2_FIVEFOLD_TILT = np.degrees(np.arctan2(1, _PHI))

# rotation taking the I2 setting (2-folds on x, y and z, a 5-fold at (1, 0, phi))
# into each icosahedral setting
_ICOSAHEDRAL_SETTINGS = {
    1: Rotation.from_euler("z", 90, degrees=True),
    2: Rotation.identity(),
    3: Rotation.from_euler("y", -_I2_FIVEFOLD_TILT, degrees=True),
    4: Rotation.from_euler("y", _I2_FIVEFOLD_TILT, degrees=True),
    5: Rotation.from_euler("yz", [-_I2_FIVEFOLD_TILT, 90], degrees=True),
}


def _has_axis(rotations: np.ndarray, axis: np.ndarray) -> bool:
    is_identity = np.all(np.isclose(rotations, np.eye(3)), axis=(-2, -1))
    fixed = np.all(np.isclose(rotations @ axis, axis, atol=1e-8), axis=-1)
    return bool(np.any(fixed & ~is_identity))


def _icosahedral_rotations(setting: int) -> np.ndarray:
    rotations = Rotation.create_group("I").as_matrix()
    fivefold = np.array([1.0, 0.0, _PHI]) / np.sqrt(1 + _PHI**2)
    if not _has_axis(rotations, fivefold):
        # the other 222 setting, turned 90 degrees about z
        quarter_turn = Rotation.from_euler("z", 90, degrees=True).as_matrix()
        rotations = quarter_turn @ rotations @ quarter_turn.T
    setting_rotation = _ICOSAHEDRAL_SETTINGS[setting].as_matrix()
    return setting_rotation @ rotations @ setting_rotation.T


class SymmetryGroup:
    """Rotations of a point group given by its symbol.

    The identity is implicit: `matrices` only holds the non-identity
    operators, so a `C1` group has no matrices at all.

    Icosahedral groups come in five settings:

    - `I1`: 2-folds on x, y and z, a 5-fold at `(0, 1, phi)`.
    - `I2` (also plain `I`): 2-folds on x, y and z, a 5-fold at `(1, 0, phi)`.
    - `I3`: 5-fold on z, a 2-fold tilted from z towards -x.
    - `I4`: 5-fold on z, a 2-fold tilted from z towards +x.
    - `I5`: 5-fold on z, a 2-fold on x.
    """

    def __init__(self, group_type: str, group_order: int = 1, setting: int = 2):
        group_type = group_type.upper()
        if group_type not in _GROUP_TYPES:
            raise ValueError(
                f"Symmetry type {group_type} not supported. Try: {_GROUP_TYPES}."
            )
        if group_type in ("C", "D") and group_order < 1:
            raise ValueError(f"Symmetry order must be >= 1, got {group_order}")
        if group_type == "I" and setting not in _ICOSAHEDRAL_SETTINGS:
            raise ValueError(
                f"Icosahedral setting must be one of {tuple(_ICOSAHEDRAL_SETTINGS)}, "
                f"got {setting}"
            )
        self.group_type = group_type
        self.group_order = int(group_order) if group_type in ("C", "D") else None
        self.setting = int(setting) if group_type == "I" else None

        if group_type == "I":
            rotations = _icosahedral_rotations(self.setting)
        else:
            rotations = Rotation.create_group(self.symbol).as_matrix()
        is_identity = np.all(np.isclose(rotations, np.eye(3)), axis=(-2, -1))
        self._matrices = torch.as_tensor(
            rotations[~is_identity], dtype=torch.float64
        )
        logger.debug(
            f"symmetry {self.symbol}: {len(self._matrices)} non-identity operators"
        )

    @classmethod
    def parse(cls, symmetry: "str | SymmetryGroup | None") -> "SymmetryGroup":
        """Build a group from a symbol such as 'c1', 'C7', 'd2', 'T', 'O' or 'I3'."""
        if symmetry is None:
            return cls("C", 1)
        if isinstance(symmetry, SymmetryGroup):
            return symmetry
        if not isinstance(symmetry, str):
            raise TypeError(
                f"`symmetry` must be a string or `SymmetryGroup`, found {type(symmetry)}"
            )

        symbol = symmetry.strip().upper()
        if not symbol:
            raise ValueError("empty symmetry symbol")
        group_type, group_order = symbol[0], symbol[1:]
        if group_type in ("C", "D"):
            if not group_order.isdigit():
                raise ValueError(f"Symmetry {symmetry} requires an integer order.")
            return cls(group_type, int(group_order))
        if group_type == "I":
            if not group_order:
                return cls("I")
            if group_order.isdigit() and int(group_order) in _ICOSAHEDRAL_SETTINGS:
                return cls("I", setting=int(group_order))
            raise ValueError(f"Symmetry {symmetry} is not a supported setting.")
        if group_order:
            raise ValueError(f"Symmetry {symmetry} is not a supported setting.")
        return cls(group_type)

    @property
    def symbol(self) -> str:
        if self.setting is not None:
            return f"{self.group_type}{self.setting}"
        if self.group_order is None:
            return self.group_type
        return f"{self.group_type}{self.group_order}"

    @property
    def matrices(self) -> torch.Tensor:
        """`(n, 3, 3)` non-identity rotations acting on xyz column vectors."""
        return self._matrices

    @property
    def order(self) -> int:
        """Number of elements in the group, identity included."""
        return len(self._matrices) + 1

    def __len__(self) -> int:
        return len(self._matrices)

    def __eq__(self, other):
        if isinstance(other, SymmetryGroup):
            return self.symbol == other.symbol
        return False

    def __repr__(self):
        return f"{self.__class__.__name__}({self.symbol!r})"

    def __str__(self):
        return self.symbol
