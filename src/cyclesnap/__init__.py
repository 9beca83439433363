"""
Geometric time-warping for MIDI loops.

Segments a source file into a grid, solves the geometric series parameters,
and regenerates a stretched copy that keeps each event's groove offset.
"""

__all__ = [
    "timebase",
    "series_math",
    "solver",
    "grid_model",
    "transform_engine",
]
