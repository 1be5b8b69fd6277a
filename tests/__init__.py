"""Job-ETL Test Suite.

This package contains unit and integration tests for the Job-ETL project.

Test Structure:
- unit/: Unit tests for individual functions and classes
- integration/: Integration tests for service-to-service communication
"""

__version__ = "0.1.0"
