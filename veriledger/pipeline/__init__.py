"""Claim structuring and evidence planning."""
