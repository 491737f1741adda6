"""
API routes for the read-only guild snapshot.

- members: current member snapshot
- errors: recent sync errors and statistics
- sync: sync status, progress events and manual triggers
"""
