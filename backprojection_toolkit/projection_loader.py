# projection_loader.py
# ------------------------------------------------------------
# Projection loading module for CT data.
#
# Supports:
# - read_file: collective read of a float32 segment from a shared file
# - load_projection_data: projection image, 3x4 transform and cone-beam
#   weights of one projection id
# - check_volume_memory: RAM check for the reconstruction volumes
#
# All reads go through the process group, so every rank has to call
# load_projection_data for the same ids in the same order, even for the
# projections it does not own.
# ------------------------------------------------------------

##% import libraries
import os
from dataclasses import dataclass

import numpy as np
import psutil

from .logger import write_log


def read_file(size, offset, filename, group):
    """
    Read `size` float32 values starting at element `offset` of `filename`.

    Parameters
    ----------
    size : int
        Number of elements to read (in floats).
    offset : int
        Offset into the file (in floats), the byte offset is offset * 4.
    filename : str
        File shared by all ranks.
    group : ProcessGroup
        Group performing the collective read; every member calls with the same arguments.

    Returns
    -------
    np.ndarray
        Freshly allocated float32 array of length `size`.
    """
    return group.collective_read(filename, offset, size)


@dataclass(frozen=True)
class ProjectionData:
    """CT data that are associated with a specific projection."""

    # pre-processed 2D X-ray image, (detector_rows, detector_columns)
    projection: np.ndarray
    # maps homogeneous (x, y, z, 1) voxel coordinates to detector (u, v, w), (3, 4)
    transform_matrix: np.ndarray
    # post weight compensating for the cone effect, one per (x, y) column, (V*V,)
    volume_weight: np.ndarray


def load_projection_data(projection_id, num_voxels, input_dir, scan, group):
    """
    Load projection specific CT data.

    Parameters
    ----------
    projection_id : int
        The id of the projection to load.
    num_voxels : int
        Number of voxels per axis (volume assumed cubic).
    input_dir : str
        The CT data directory.
    scan : ScanConstants
        Detector size and projection count shared by all ranks.
    group : ProcessGroup
        Group used for the collective reads.

    Returns
    -------
    ProjectionData
    """
    voxel_dir = os.path.join(input_dir, str(num_voxels))
    detector_size = scan.detector_rows * scan.detector_columns
    slice_size = num_voxels * num_voxels

    # 2D projection data
    projection = read_file(detector_size, projection_id * detector_size,
                           os.path.join(input_dir, "projections.bin"), group)

    # Transform matrix aligning the 3D volume with the recorded 2D projection
    transform = read_file(3 * 4, projection_id * 3 * 4,
                          os.path.join(input_dir, "transform.bin"), group)

    # Volume weight compensating for cone beam ray density
    volume_weight = read_file(slice_size, projection_id * slice_size,
                              os.path.join(voxel_dir, "volumeweight.bin"), group)

    pdata = ProjectionData(
        projection=projection.reshape(scan.detector_rows, scan.detector_columns),
        transform_matrix=transform.reshape(3, 4),
        volume_weight=volume_weight,
    )
    # read-only inside the parallel region
    for arr in (pdata.projection, pdata.transform_matrix, pdata.volume_weight):
        arr.flags.writeable = False
    return pdata


def check_volume_memory(num_voxels, context, bytes_per_voxel=4):
    """
    Compares the memory needed by the reconstruction volumes with the available RAM.

    Every rank holds one local volume; the coordinator also receives the final one.
    Ranks sharing a node share its RAM, so the warning is only a hint.

    Returns:
        needed_MB, available_MB
    """
    mem_info = psutil.virtual_memory()
    available_MB = mem_info.available / (1024**2)

    volume_MB = num_voxels**3 * bytes_per_voxel / (1024**2)
    copies = 2 if context.is_coordinator else 1
    needed_MB = copies * volume_MB

    if needed_MB > available_MB:
        write_log(f"WARNING: reconstruction needs {needed_MB:.2f} MB, "
                  f"only {available_MB:.2f} MB RAM available", rank=context.rank)

    return needed_MB, available_MB
