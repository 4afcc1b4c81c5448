# backprojection.py
# ------------------------------------------------------------
# Voxel-driven back-projection kernel.
#
# For one projection, every voxel (x, y, z) is mapped through the 3x4
# transform matrix onto the detector, rounded to the nearest pixel and,
# when it lands on the detector, the weighted pixel value is added to
# the voxel. Rays leaving the detector are masked out, not clamped.
#
# The Z slices are split into contiguous chunks and processed by a
# joblib thread pool. A chunk owns volume[z_start:z_stop], so no two
# workers write the same element and no locking is needed.
#
# Arithmetic is float32 throughout. Pixel rounding is half away from
# zero (0.5 -> 1, -0.5 -> -1, 2.5 -> 3).
# ------------------------------------------------------------

##% Define the libraries
import numpy as np
from joblib import Parallel, delayed, cpu_count

from .partitioning import slice_chunks


def round_half_away_from_zero(values):
    """
    Round to the nearest whole number, ties away from zero.

    Non-finite inputs stay non-finite. The result keeps the input dtype.
    """
    values = np.asarray(values)
    with np.errstate(invalid="ignore"):
        whole = np.trunc(values)
        # values - whole is exact, so 0.49999997 does not round up
        return whole + np.sign(values) * (np.abs(values - whole) >= 0.5)


def map_to_detector(transform_matrix, x, y, z):
    """
    Map voxel coordinates to detector pixel coordinates.

    Parameters
    ----------
    transform_matrix : np.ndarray
        3x4 (or 12 element, row-major) matrix of one projection.
    x, y : np.ndarray
        X and Y voxel coordinates.
    z : float or np.ndarray
        Z voxel coordinate(s).

    Returns
    -------
    col, row : np.ndarray
        Rounded detector column and row as float32 whole numbers.
        Non-finite where the homogeneous w component is zero.
    """
    t = np.asarray(transform_matrix, dtype=np.float32).reshape(3, 4)
    x = np.asarray(x, dtype=np.float32)
    y = np.asarray(y, dtype=np.float32)
    z = np.asarray(z, dtype=np.float32)

    # homogeneous (x, y, z, 1), summed in component order
    u, v, w = (((x * t[r, 0] + y * t[r, 1]) + z * t[r, 2]) + t[r, 3] for r in range(3))

    with np.errstate(divide="ignore", invalid="ignore"):
        col = round_half_away_from_zero(u / w)
        row = round_half_away_from_zero(v / w)
    return col, row


def _backproject_slab(volume, z_start, z_stop, gdata, pdata, scan):
    x = gdata.combined_matrix[0]
    y = gdata.combined_matrix[1]

    for z in range(z_start, z_stop):
        col, row = map_to_detector(pdata.transform_matrix, x, y, gdata.z_voxel_coords[z])

        # x-rays that hit outside the detector area are masked out
        with np.errstate(invalid="ignore"):
            hit = (col >= 0) & (row >= 0) & (col < scan.detector_columns) & (row < scan.detector_rows)
        if not hit.any():
            continue

        pixels = pdata.projection[row[hit].astype(np.intp), col[hit].astype(np.intp)]
        out = volume[z]
        out[hit] += pixels * pdata.volume_weight[hit]


def backproject_projection(volume, gdata, pdata, scan, n_jobs=None, parallel=None):
    """
    Accumulate the contribution of one projection into `volume` in-place.

    Parameters
    ----------
    volume : np.ndarray
        float32 accumulator of shape (V, V*V), indexed volume[z, y*V + x].
    gdata : GlobalData
        Voxel coordinate tables.
    pdata : ProjectionData
        Projection image, transform matrix and cone-beam weights.
    scan : ScanConstants
        Detector size.
    n_jobs : int, optional
        Number of worker threads (and slice chunks). Defaults to all cores.
    parallel : joblib.Parallel, optional
        Already opened thread pool to reuse across projections.

    Returns
    -------
    np.ndarray
        The same `volume`, updated.
    """
    num_voxels = gdata.num_voxels
    if volume.shape != (num_voxels, num_voxels * num_voxels) or volume.dtype != np.float32:
        raise ValueError(
            f"Volume must be float32 of shape {(num_voxels, num_voxels * num_voxels)}, "
            f"got {volume.dtype} {volume.shape}"
        )

    if n_jobs is None or n_jobs < 1:
        n_jobs = cpu_count()
    if parallel is None:
        parallel = Parallel(n_jobs=n_jobs, backend="threading", prefer="threads")

    # chunks are disjoint, each worker writes only its own slices
    parallel(
        delayed(_backproject_slab)(volume, z_start, z_stop, gdata, pdata, scan)
        for z_start, z_stop in slice_chunks(num_voxels, n_jobs)
    )
    return volume
