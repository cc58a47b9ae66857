"""therapy-progress: goal mastery and progress reporting for AAC therapy."""

__version__ = "0.1.0"
