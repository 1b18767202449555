"""Database layer: declarative base, engine/session management, column types."""
