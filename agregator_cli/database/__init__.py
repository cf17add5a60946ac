"""Database models, connection handling and repositories."""
