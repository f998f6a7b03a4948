"""xcpilot — build, run and manage apps on iOS simulators."""

__version__ = "0.1.0"
