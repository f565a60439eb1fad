"""
Hierarchical Tasks

Capacity-limited parallel task execution with hierarchical concurrency
ceilings and idempotent, resumable task identities.
"""

__version__ = "0.1.0"
