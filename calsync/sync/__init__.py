"""Calendar sync: push local schedules out, pull provider events in

Components:
    dedup.py: Heuristic title/time identity keys
    tokens.py: Token source returning a valid bearer token or None
    state.py: Per-user sync state store
    outbound.py: Local -> provider
    inbound.py: Provider -> local, with tombstone detection
    orchestrator.py: Cooldown, isolation and re-auth handling per user
"""
