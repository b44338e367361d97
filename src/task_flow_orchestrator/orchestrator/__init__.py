"""Flow orchestration engine and the components it drives."""
