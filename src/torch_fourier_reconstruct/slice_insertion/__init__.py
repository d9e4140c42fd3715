"""Insert rotated 2D/3D DFTs into a padded reference grid."""

from ._backproject_rfft import (
    backproject_rfft_2d_to_3d,
    backrotate_rfft_2d,
    backrotate_rfft_3d,
)

__all__ = [
    "backrotate_rfft_2d",
    "backrotate_rfft_3d",
    "backproject_rfft_2d_to_3d",
]
