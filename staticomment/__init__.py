"""staticomment - receives comment form posts and publishes them to a git repository."""

__version__ = "0.1.0"
