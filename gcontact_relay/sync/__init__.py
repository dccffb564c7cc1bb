"""
gcontact_relay.sync - Reconciliation core

Record model, canonical digests, fingerprints, matching, merging and the
pull/push phases sequenced by the SyncOrchestrator.
"""
