"""terrastack — locking, remote state, and stacks in front of terraform."""

__version__ = "0.1.0"
