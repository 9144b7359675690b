"""Database infrastructure: engine, declarative base, column types."""
