"""
Child processes with full control over their standard streams.

Usage:
    from pipeworks import capture3, popen3, pipeline_rw

    # Run to completion, feeding stdin and collecting both outputs
    out, err, status = capture3("sort", stdin_data="b\\na\\n")
    if status.success:
        print(out)

    # Talk to a running process; the block waits for it on exit
    with popen3("cat") as (stdin, stdout, stderr, proc):
        stdin.write(b"hello")
        stdin.close()
        print(stdout.read())

    # Chain processes with real OS pipes
    with pipeline_rw("sort", "uniq -c") as (stdin, stdout, stages):
        stdin.write(b"b\\na\\nb\\n")
        stdin.close()
        print(stdout.read())
    print(stages.wait())
"""

import logging

from pipeworks.capture import capture2, capture2e, capture3
from pipeworks.errors import (
    CommandError,
    Error,
    ExitWaitError,
    PrematureEOF,
    SpawnError,
)
from pipeworks.pipeline import (
    Pipeline,
    pipeline,
    pipeline_r,
    pipeline_rw,
    pipeline_start,
    pipeline_w,
)
from pipeworks.popen import popen2, popen2e, popen3
from pipeworks.process import ExitStatus, ProcessHandle
from pipeworks.pump import CAPTURE_BUFFER_SIZE, StreamPump
from pipeworks.spawn import DEVNULL, INHERIT, PIPE, STDOUT, Command, spawn

__version__ = "0.1.0"

__all__ = [
    "CAPTURE_BUFFER_SIZE",
    "Command",
    "CommandError",
    "DEVNULL",
    "Error",
    "ExitStatus",
    "ExitWaitError",
    "INHERIT",
    "PIPE",
    "Pipeline",
    "PrematureEOF",
    "ProcessHandle",
    "STDOUT",
    "SpawnError",
    "StreamPump",
    "capture2",
    "capture2e",
    "capture3",
    "pipeline",
    "pipeline_r",
    "pipeline_rw",
    "pipeline_start",
    "pipeline_w",
    "popen2",
    "popen2e",
    "popen3",
    "spawn",
    "__version__",
]

logging.getLogger(__name__).addHandler(logging.NullHandler())
