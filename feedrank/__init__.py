"""Feed ranking, interest profiling and creator trust scoring."""

__version__ = "1.0.0"
