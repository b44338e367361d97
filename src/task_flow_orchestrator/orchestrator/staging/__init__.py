"""Local staging store and task lifecycle."""
