from pathlib import Path

import numpy as np
import pytest


def _default_combined(num_voxels):
    # rows 0/1: X and Y of every (x, y) pair, row 2 placeholder, row 3 ones
    coords = np.linspace(-1.0, 1.0, num_voxels, dtype=np.float32)
    yy, xx = np.meshgrid(coords, coords, indexing="ij")
    combined = np.zeros((4, num_voxels * num_voxels), dtype=np.float32)
    combined[0] = xx.ravel()
    combined[1] = yy.ravel()
    combined[3] = 1.0
    return combined


@pytest.fixture
def make_dataset(tmp_path):
    """
    Write a CT input directory in the on-disk layout and return its path.

        <root>/projections.bin, <root>/transform.bin
        <root>/<V>/combined.bin, z_voxel_coords.bin, volumeweight.bin
    """
    def _make(num_voxels, projections, transforms, weights, combined=None, z_coords=None, name="input"):
        root = Path(tmp_path) / name
        voxel_dir = root / str(num_voxels)
        voxel_dir.mkdir(parents=True, exist_ok=True)

        if combined is None:
            combined = _default_combined(num_voxels)
        if z_coords is None:
            z_coords = np.linspace(-1.0, 1.0, num_voxels, dtype=np.float32)

        np.asarray(projections, dtype=np.float32).tofile(root / "projections.bin")
        np.asarray(transforms, dtype=np.float32).tofile(root / "transform.bin")
        np.asarray(weights, dtype=np.float32).tofile(voxel_dir / "volumeweight.bin")
        np.asarray(combined, dtype=np.float32).tofile(voxel_dir / "combined.bin")
        np.asarray(z_coords, dtype=np.float32).tofile(voxel_dir / "z_voxel_coords.bin")
        return str(root)

    return _make
