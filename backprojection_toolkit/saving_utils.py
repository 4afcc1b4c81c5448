# saving_utils.py
# ------------------------------------------------------------
# Output Saving Module for CT Reconstruction
#
# This module handles the saving of:
# - Reconstructed volume (float32 RAW, (z, y, x)-major)
# - Central slice preview (2D PNG)
#
# Only the coordinator rank calls into this module.
# ------------------------------------------------------------

import os

import numpy as np
import matplotlib.pyplot as plt

from .logger import write_log


def write_file(data, offset, filename):
    """
    Write binary file.

    Parameters
    ----------
    data : array_like
        The data to write, stored as float32.
    offset : int
        The offset into the file to write (in floats).
    filename : str
        The filename, created or truncated.
    """
    data = np.ascontiguousarray(data, dtype=np.float32)
    with open(filename, "wb") as f:
        f.seek(offset * data.itemsize)
        data.tofile(f)


def save_outputs(output_file, recon, save_central_slice=False):
    """
    Saves the final reconstruction: the RAW volume and, on request, a PNG
    of the central Z slice next to it.

    Parameters
    ----------
    output_file : str or None
        Path of the RAW volume. Nothing is written when empty.
    recon : np.ndarray
        Final volume of shape (V, V, V).
    save_central_slice : bool
        Also save <output_file stem>_central_slice_VxV.png.

    Returns
    -------
    list of str
        Paths written.
    """
    if not output_file:
        write_log("No output file given, volume not saved")
        return []

    output_dir = os.path.dirname(os.path.abspath(output_file))
    os.makedirs(output_dir, exist_ok=True)
    written = []

    # === Save raw volume ===
    write_file(recon.ravel(), 0, output_file)
    shape_str = "x".join(map(str, recon.shape[::-1]))
    write_log(f"Saved RAW VOLUME ({shape_str}) -> {output_file}")
    written.append(output_file)

    # === Save central slice ===
    if save_central_slice:
        slice_img = recon[recon.shape[0] // 2]
        image_path = f"{os.path.splitext(output_file)[0]}_central_slice_{slice_img.shape[1]}x{slice_img.shape[0]}.png"
        plt.imsave(image_path, slice_img, cmap='gray')
        write_log(f"Saved CENTRAL SLICE -> {image_path}")
        written.append(image_path)

    return written
