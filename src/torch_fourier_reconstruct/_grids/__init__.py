from ._central_slice_frequency_grid import _central_slice_frequency_grid
from ._rfft_frequency_grid import (
    _fft_layout_frequency_grid,
    _radial_shells,
    _rfft_frequency_grid,
)

__all__ = [
    "_central_slice_frequency_grid",
    "_fft_layout_frequency_grid",
    "_radial_shells",
    "_rfft_frequency_grid",
]
