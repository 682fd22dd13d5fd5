"""
Chainhook ingestion: payload gate, block walking, decoding, reorg
reconciliation and the per-domain pipeline.
"""
