"""SMS Fix: corrects the timestamps of incoming messages exactly once."""

__version__ = "0.1.0"
