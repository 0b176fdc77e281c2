"""Core configuration, errors and shared dependencies."""
