"""CLI module for contextkeeper."""
