"""
Run orchestrator.

Sequences the migration phases, owns cancellation and builds the run report.
Entry point: ``python -m property_migration.orchestrator.main``.
"""

__version__ = "0.1.0"
