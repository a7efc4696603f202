"""Core utilities: configuration, logging, errors, money and time."""
