"""Ruche: a node hive manager.

Single-host orchestrator that provisions and tears down a bounded fleet of
storage-network nodes, each running in its own container:
 - identity allocation (1..99) with gap filling
 - port and data directory derivation from the node identity
 - a persistent node registry
 - container lifecycle (create/start/stop/recreate/remove)
 - two-phase, confirmed deletion
"""
