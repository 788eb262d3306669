"""GrblCAD Core - GRBL serial link and G-code motion interpreter.

The link streams programs to GRBL 1.1 controllers with per-line
acknowledgment; the interpreter turns the same programs into segments for
simulation and progress display.
"""

__version__ = "0.1.0"
__author__ = "Bob Kolbasowski"

from .events import EventBus
from .gcode_parser import interpret, job_lines
from .grbl_worker import GrblWorker
from .job_streamer import JobStreamer
from .path_metrics import bounding_box, point_at_progress
from .utils import Settings

__all__ = [
    "EventBus",
    "GrblWorker",
    "JobStreamer",
    "Settings",
    "bounding_box",
    "interpret",
    "job_lines",
    "point_at_progress",
]
