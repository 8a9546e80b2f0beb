"""Database query modules for Reviewflow.

Modules:
    entity: Entity CRUD, snapshots, collaborators and the stage swap.
    review: Review rows keyed by entity, round and reviewer.
    lifecycle: Scans used by the lifecycle scheduler.
"""
