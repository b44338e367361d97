"""Flow definitions, the capability registry and the executor."""
