"""office-engine: bounded agent sessions and workflow DAG execution."""

__version__ = "0.1.0"
