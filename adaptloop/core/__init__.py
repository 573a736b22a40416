"""Core domain layer for adaptloop: models and errors."""
