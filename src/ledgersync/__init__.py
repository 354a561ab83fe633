"""
ledgersync - synchronization and reconciliation pipeline.

Pushes approved time-tracking submissions to an external accounting
ledger through a durable job queue, with supervised batch migration and a
reviewer-driven quarantine for records that cannot be synced
automatically.

Subpackages:
    core         errors, logging, settings, storage adapter, schema
    domain       submissions and their validation
    execution    job store, queue manager, classifier, retry, workers
    migration    batch migration controller
    quarantine   quarantine store and reviewer
    ops          transport-agnostic operations used by api and cli
"""

__version__ = "0.1.0"
