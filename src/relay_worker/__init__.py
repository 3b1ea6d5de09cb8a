"""relay_worker: background analysis and data hygiene pipeline for interaction reports and session replays.

Entry points: `relay_worker.jobs` for submitting work, `relay_worker.worker` for running a queue worker.
"""

__version__ = "0.1.0"

__all__ = ["config", "jobs", "worker"]
