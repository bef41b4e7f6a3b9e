"""Database engine, sessions and schema capabilities."""
