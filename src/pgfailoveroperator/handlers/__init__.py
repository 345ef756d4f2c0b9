"""Kopf handlers for the pg-failover-operator."""

__all__ = (
    "handle_node_update",
    "handle_pod_event",
    "handle_replicas_change",
    "handle_template_change",
    "resume_rolling_update",
    "start_operator",
)

from pgfailoveroperator.handlers.nodewatcher import handle_node_update
from pgfailoveroperator.handlers.podwatcher import handle_pod_event
from pgfailoveroperator.handlers.rollingupdate import (
    handle_template_change,
    resume_rolling_update,
)
from pgfailoveroperator.handlers.statefulsetwatcher import (
    handle_replicas_change,
)
from pgfailoveroperator.startup import start_operator
