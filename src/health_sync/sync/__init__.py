"""Sync attempt infrastructure.

Modules:
    orchestrator — Per-attempt state machine (backfill and incremental)
    cursor       — Change token stores (in-memory, JSON file)
"""
