"""LMS content service: hierarchy cache and progress engine."""

__version__ = "1.0.0"
