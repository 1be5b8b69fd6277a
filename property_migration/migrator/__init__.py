"""Batch migrator: windowed, concurrent upsert of property rows."""

from .batch_migrator import BatchMigrator

__all__ = ["BatchMigrator"]
