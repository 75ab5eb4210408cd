"""Agent-facing integration for the context manager."""
