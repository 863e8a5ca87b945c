"""Task-graph workflow coordinator for agent-driven development."""

__version__ = "0.1.0"
