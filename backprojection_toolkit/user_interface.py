# user_interface.py
# ------------------------------------------------------------
# Command-line module for collecting CT reconstruction parameters
#
# Gathers the user inputs required for the reconstruction:
# - Number of voxels per axis and the input data directory (required)
# - Output RAW file and optional central slice preview
# - Threads per rank and projection partitioning
# - Scan constants of the prepared data set
# - Log file (written by the coordinator)
#
# Outputs:
#   A dictionary of all selected user inputs, to be used in main.py
#
# Every rank parses the same command line, so all of them end up
# with identical inputs.
# ------------------------------------------------------------

import argparse

from .geometry_reader import ScanConstants
from .partitioning import PARTITIONERS


def _positive_int(text):
    value = int(text)
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {text}")
    return value


def build_parser():
    defaults = ScanConstants()
    parser = argparse.ArgumentParser(
        description="Distributed voxel-driven back-projection of CT projections")
    parser.add_argument("--num-voxels", type=_positive_int, required=True,
                        help="number of voxels per axis (e.g. --num-voxels 128)")
    parser.add_argument("--input", required=True,
                        help="input directory (e.g. --input ./input)")
    parser.add_argument("--out", default="",
                        help="RAW output file; nothing is written when omitted")
    parser.add_argument("--n-jobs", type=_positive_int, default=None,
                        help="worker threads per rank (default: all cores)")
    parser.add_argument("--partition", choices=sorted(PARTITIONERS), default="static",
                        help="static: remainder on the last rank, balanced: spread the remainder")
    parser.add_argument("--num-projections", type=_positive_int, default=defaults.num_projections)
    parser.add_argument("--detector-rows", type=_positive_int, default=defaults.detector_rows)
    parser.add_argument("--detector-columns", type=_positive_int, default=defaults.detector_columns)
    parser.add_argument("--log-file", default=None,
                        help="also append the coordinator log to this file")
    parser.add_argument("--save-central-slice", action="store_true",
                        help="save a PNG of the central slice next to the output file")
    return parser


def get_user_inputs(argv=None):
    """
    Parse the command line into the user inputs dictionary.
    Missing --num-voxels or --input exits with a usage error (status 2).
    """
    args = build_parser().parse_args(argv)

    inputs = {}
    inputs["num_voxels"] = args.num_voxels
    inputs["input_dir"] = args.input
    inputs["output_file"] = args.out or None
    inputs["n_jobs"] = args.n_jobs
    inputs["partition"] = args.partition
    inputs["num_projections"] = args.num_projections
    inputs["detector_rows"] = args.detector_rows
    inputs["detector_columns"] = args.detector_columns
    inputs["log_file"] = args.log_file
    inputs["save_central_slice"] = args.save_central_slice
    return inputs


def scan_constants(user_inputs):
    return ScanConstants(
        num_projections=user_inputs["num_projections"],
        detector_rows=user_inputs["detector_rows"],
        detector_columns=user_inputs["detector_columns"],
    )
