"""
roster_batch -- batch change & revert audit engine for employee records.

Turns ``{entity_id: {attribute: new_value}}`` into applied (or scheduled)
field mutations plus an append-only per-field change log, and lets a whole
batch or a single change be reverted later.

Entry point: ``roster_batch.orchestrator.BulkEditOrchestrator``.
"""
