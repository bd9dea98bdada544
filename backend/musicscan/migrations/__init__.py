"""Idempotent schema migrations for existing databases."""
