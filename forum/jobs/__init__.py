"""
Background jobs for the forum backend.

This package provides a table-backed job queue with:
- A fixed registry of job kinds populated at startup
- Atomic claiming (FOR UPDATE SKIP LOCKED, or conditional updates off PostgreSQL)
- A pool of polling workers with per-record timeouts
- A sweep that recovers records left running past their timeout
"""
