"""Reconciliation engine: prober, patcher, orchestrator."""
