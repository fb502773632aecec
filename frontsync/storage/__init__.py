"""Storage port and its SQLAlchemy implementation."""
