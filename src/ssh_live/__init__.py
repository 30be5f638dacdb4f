"""Session management core for the ssh-live remote shell client."""

__version__ = "0.1.0"
