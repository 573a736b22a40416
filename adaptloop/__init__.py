"""adaptloop: configuration-driven behavioral adaptation pipeline."""

__version__ = "0.1.0"
