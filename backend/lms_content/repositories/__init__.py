"""Repository interfaces and SQLAlchemy implementations."""
