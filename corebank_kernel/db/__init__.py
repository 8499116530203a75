"""Database infrastructure: declarative base, engine/session management, column types, immutability guards."""
