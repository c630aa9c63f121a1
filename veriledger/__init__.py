"""
veriledger - claim ingestion and structuring pipeline.

Watches a ledger's mirror node for anchored content identifiers, fetches the
payload from content gateways, turns the text into a structured claim and
prepares an evidence plan for the verification phase.

Packages:
    ingest - ledger watcher, gateway fetcher, content store, health, events
    pipeline - claim structuring, scoring, semantic enrichment, evidence planning
    config - YAML + environment settings
    api - thin FastAPI read layer
"""

__version__ = "0.3.0"
