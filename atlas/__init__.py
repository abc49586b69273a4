"""atlas - matrix cycle and queue engine."""

__version__ = "1.0.0"
