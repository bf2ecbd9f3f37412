"""Error-event logging, recovery and global failure capture."""

__version__ = "0.1.0"
