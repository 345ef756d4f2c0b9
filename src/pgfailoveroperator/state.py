"""Constructed (cached) state as module-level attributes."""

import os

from pgfailoveroperator.config import MigrationConfig
from pgfailoveroperator.podevents import PodEventBus

namespace = os.environ.get("PFO_NAMESPACE", "default")
"""The name of the Kubernetes namespace monitored by this operator. """

config = MigrationConfig.from_env()
"""Migration settings shared by all managed clusters."""

pod_events = PodEventBus()
"""Fan-in point for pod watch events, shared by all cluster migrators."""

max_workers = int(os.environ.get("PFO_MAX_WORKERS", 64))
"""Size of kopf's thread pool for synchronous handlers.

A migration holds a worker for as long as it waits on pod events, so this
bounds how many migrations can run at once.
"""

resync_period = float(os.environ.get("PFO_RESYNC_PERIOD", 300))
"""Seconds between passes that resume unfinished rolling updates."""
