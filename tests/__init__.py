"""GridWatch test suite."""
