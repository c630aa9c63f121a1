"""HTTP read layer over the orchestrator."""
