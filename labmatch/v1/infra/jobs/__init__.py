"""
Background job system.

This package provides:
- A job model with priorities, dedup fingerprints and dead-lettering
- Two queue backends behind one contract: in-process and Postgres-backed
- Atomic multi-worker claiming with FOR UPDATE SKIP LOCKED
- Exponential backoff with jitter and an opt-in claim-timeout reaper
- The job processor and worker process entry point
"""
