"""CLI command implementations for devloop.

This module contains the command group implementations:
- metrics: Inspect the persisted scope snapshot
- config: Manage configuration
"""
