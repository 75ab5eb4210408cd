"""contextkeeper - conversation context-window management for chat agents."""

__version__ = "0.1.0"
__logo__ = "🧮"
