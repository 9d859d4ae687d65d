"""
roster_batch.services -- change stores, fan-out, lifecycle controller and
the apply / revert engines.
"""
