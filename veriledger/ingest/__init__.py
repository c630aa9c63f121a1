"""Ledger discovery and content retrieval."""
