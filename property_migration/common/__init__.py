"""
Common plumbing shared across the migration components.

Configuration loading, the relational store, retry, bounded concurrency and
the run report live here so every phase uses the same implementation.
"""
