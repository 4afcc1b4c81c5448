# logger.py
# ---------------------------------------------
# Logging utility for writing time-stamped logs
# to both terminal and file.
#
# Functions:
# - log_step(step_name): Context manager for logging process durations.
# - write_log(message): Write plain log messages with timestamp.
# - set_log_path(path): Route log lines to a file as well (coordinator only).
#
# Every rank prints to its own terminal; pass rank= to tag the line.
# ---------------------------------------------

import datetime, os, time

LOG_FILE_PATH = None  # Will be set after user_inputs


def _format(message, rank=None):
    timestamp = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    if rank is None:
        return f"[{timestamp}] {message}"
    return f"[{timestamp}] [rank {rank}] {message}"


def _emit(line):
    print(line, flush=True)
    if LOG_FILE_PATH:
        with open(LOG_FILE_PATH, "a") as f:
            f.write(line + "\n")


def log_step(step_name, rank=None, quiet=False):
    """
    Log a step: prints to terminal and writes to log file.
    The measured duration stays available as `.elapsed` after the block.
    With quiet=True nothing is printed, only the timing is kept.

    Usage:
        with log_step("Loading projections") as step:
            # do stuff
        reading_time += step.elapsed
    """
    class LogContext:
        def __enter__(self):
            self.elapsed = 0.0
            self.start_time = time.time()
            if not quiet:
                self._log(f"{step_name} started...")
            return self

        def __exit__(self, exc_type, exc_val, exc_tb):
            self.elapsed = time.time() - self.start_time
            if quiet:
                return
            if exc_type is None:
                self._log(f"{step_name} completed in {self.elapsed:.2f} sec")
            else:
                self._log(f"{step_name} failed after {self.elapsed:.2f} sec: {exc_val}")

        def _log(self, message):
            _emit(_format(message, rank))

    return LogContext()

def write_log(message, rank=None):
    _emit(_format(message, rank))


def set_log_path(path):
    global LOG_FILE_PATH
    if path:
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    LOG_FILE_PATH = path
