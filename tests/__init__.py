"""Test suite for celltype_tree.

Test organization:
- fixtures/: Synthetic data generators and test utilities
- unit/: Unit tests for individual modules and the CLI

Run tests with:
    pytest tests/
    pytest tests/unit/
    pytest tests/ -v --tb=short
"""
