"""Reference adapters for the saga ports."""
