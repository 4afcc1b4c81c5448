# main.py
# ------------------------------------------------------------------------------
# Master Script for distributed CT back-projection
#
# Run on every rank of an MPI job, e.g.
#   mpiexec -n 4 python main.py --num-voxels 128 --input ./input --out recon.raw
#
# This script orchestrates the full reconstruction:
# - Gets user inputs from the command line
# - Joins the MPI process group (rank, size)
# - Sets up the coordinator log file
# - Runs the back-projection on this rank's projections
# - Reduces the partial volumes and saves the result on the coordinator
#
# Any failure on a rank aborts the whole MPI job: the other ranks would
# otherwise wait forever inside the next collective call.
#
# Dependencies:
#   - mpi4py, numpy, joblib, psutil, matplotlib
#   - backprojection_toolkit
# ------------------------------------------------------------------------------

import sys

from backprojection_toolkit import (
    get_user_inputs, scan_constants,
    write_log, set_log_path,
    main_reconstruction_flow,
)
from backprojection_toolkit.mpi_group import MPIProcessGroup


def main(argv=None):
    # 1. Get user inputs
    user_inputs = get_user_inputs(argv)

    # 2. Join the process group
    group = MPIProcessGroup()
    context = group.context

    # 3. Coordinator log file
    if context.is_coordinator and user_inputs["log_file"]:
        set_log_path(user_inputs["log_file"])

    write_log(f"CT reconstruction running on `{group.processor_name}`, "
              f"rank {context.rank} out of {context.size}.")
    if context.is_coordinator:
        write_log(f"Number of voxels: {user_inputs['num_voxels']}")
        write_log(f"Input directory: {user_inputs['input_dir']}")
        write_log(f"Output file: {user_inputs['output_file'] or '-'}")

    # 4. Reconstruction
    try:
        main_reconstruction_flow(
            num_voxels=user_inputs["num_voxels"],
            input_dir=user_inputs["input_dir"],
            group=group,
            output_file=user_inputs["output_file"],
            scan=scan_constants(user_inputs),
            n_jobs=user_inputs["n_jobs"],
            partition=user_inputs["partition"],
            save_central_slice=user_inputs["save_central_slice"],
        )
    except Exception as exc:
        write_log(f"Reconstruction failed: {exc!r}", rank=context.rank)
        group.abort(1)
        raise

    if context.is_coordinator:
        write_log("Reconstruction finished successfully.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
