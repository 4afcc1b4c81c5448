# backprojection_toolkit/__init__.py


# Process group
from .process_group import (
    GroupContext,
    ProcessGroup,
    SimulatedProcessGroup,
    CollectiveMismatchError,
    run_simulated_group,
    COORDINATOR_RANK,
)

# Geometry & I/O
from .geometry_reader import ScanConstants, GlobalData, load_global_data
from .projection_loader import ProjectionData, read_file, load_projection_data, check_volume_memory
from .saving_utils import write_file, save_outputs
from .logger import write_log, log_step, set_log_path

# Work division
from .partitioning import projection_range, balanced_projection_range, slice_chunks, collective_schedule

# Back-projection
from .backprojection import round_half_away_from_zero, map_to_detector, backproject_projection

# User Input
from .user_interface import get_user_inputs, scan_constants

# Reconstruction Logic
from .reconstruction import main_reconstruction_flow
