# geometry_reader.py
# -----------------------------------------------------
# Geometry shared by all projections of a scan.
#
# Provides:
# - ScanConstants        → projection count and detector size
# - GlobalData           → voxel coordinate tables (read-only)
# - load_global_data()   → reads <input_dir>/<V>/combined.bin and
#                          <input_dir>/<V>/z_voxel_coords.bin
#
# Example usage:
#   gdata = load_global_data(128, "./input", group)
#   x = gdata.combined_matrix[0]
# -----------------------------------------------------

##% import the libraries
import os
from dataclasses import dataclass

import numpy as np

from .projection_loader import read_file


@dataclass(frozen=True)
class ScanConstants:
    """Fixed constants of the prepared data set, identical on every rank."""

    num_projections: int = 320
    detector_rows: int = 192
    detector_columns: int = 256

    def __post_init__(self):
        for name in ("num_projections", "detector_rows", "detector_columns"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")


@dataclass(frozen=True)
class GlobalData:
    """CT data that are used for all projections."""

    # rows 0 and 1: X and Y coordinates of every (x, y) pair of a slice, (4, V*V)
    combined_matrix: np.ndarray
    # Z coordinate of every slice, (V,)
    z_voxel_coords: np.ndarray

    @property
    def num_voxels(self):
        return self.z_voxel_coords.shape[0]


def _read_only(arr):
    arr.flags.writeable = False
    return arr


def load_global_data(num_voxels, input_dir, group):
    """
    Load global CT data.

    Parameters
    ----------
    num_voxels : int
        Number of voxels per axis (volume assumed cubic).
    input_dir : str
        The CT data directory, geometry files live in input_dir/num_voxels/.
    group : ProcessGroup
        Group used for the collective reads.

    Returns
    -------
    GlobalData
    """
    if num_voxels < 1:
        raise ValueError(f"Number of voxels must be positive, got {num_voxels}")
    voxel_dir = os.path.join(input_dir, str(num_voxels))

    # Combined X,Y voxel coordinates
    combined = read_file(4 * num_voxels * num_voxels, 0,
                         os.path.join(voxel_dir, "combined.bin"), group)

    # Z voxel coordinates
    z_coords = read_file(num_voxels, 0,
                         os.path.join(voxel_dir, "z_voxel_coords.bin"), group)

    return GlobalData(
        combined_matrix=_read_only(combined.reshape(4, num_voxels * num_voxels)),
        z_voxel_coords=_read_only(z_coords),
    )
