"""
Rotation Scheduling Engine

Generates cyclic team/shift work schedules from rotation templates and
overlays user-specific turn exceptions such as vacation or overtime.
"""

__version__ = "1.0.0"
__author__ = "Rotation Scheduler Team"
