"""Process and job orchestration core for the Cale automation agent."""

__version__ = "0.1.0"

__all__ = ["__version__"]
