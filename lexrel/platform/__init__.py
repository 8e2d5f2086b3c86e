"""Platform layer: child-process plumbing."""

from lexrel.platform.process import ProcessError, command_exists, run, run_inherit

__all__ = ["ProcessError", "command_exists", "run", "run_inherit"]
