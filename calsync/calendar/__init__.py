"""Schedule calendar core: recurrence, conflicts, storage and mutation

Components:
    recurrence.py: Expand a recurrence rule into concrete occurrence windows
    conflicts.py: Detect participant and resource collisions
    store.py: SQLite schedule store and user directory
    scheduler.py: Validated create, update and delete of schedules and series
"""
