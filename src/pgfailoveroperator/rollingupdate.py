"""Read and write the rolling-update flag annotation on pods."""

__all__ = (
    "get_rolling_update_flag",
    "mark_rolling_update_flag",
    "parse_bool",
    "rolling_update_patch",
)

from typing import Any

import structlog

from pgfailoveroperator.exceptions import PodMigrationError, RetryTimeoutError
from pgfailoveroperator.k8s import patch_pod
from pgfailoveroperator.names import NamespacedName
from pgfailoveroperator.retry import retry

_TRUE_VALUES = frozenset(("1", "t", "T", "TRUE", "true", "True"))
_FALSE_VALUES = frozenset(("0", "f", "F", "FALSE", "false", "False"))


def parse_bool(value: str) -> bool:
    """Parse the boolean spellings accepted in annotations.

    Raises
    ------
    ValueError
        Raised if ``value`` is not a recognized boolean.
    """
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean value {value!r}")


def rolling_update_patch(annotation: str, flag: bool) -> dict[str, Any]:
    """Build a merge patch that sets only the rolling-update annotation."""
    return {"metadata": {"annotations": {annotation: str(flag).lower()}}}


def get_rolling_update_flag(
    pod: dict[str, Any],
    *,
    annotation: str,
    logger: Any | None = None,
) -> bool:
    """Get the rolling-update flag of a pod.

    A missing annotation means `False`. A malformed value is logged and also
    treated as `False`.
    """
    if logger is None:
        logger = structlog.getLogger(__name__)

    annotations = pod["metadata"].get("annotations") or {}
    if annotation not in annotations:
        return False

    pod_name = NamespacedName.from_pod(pod)
    value = annotations[annotation]
    logger.debug(f"found rolling update flag on pod {pod_name}")
    try:
        return parse_bool(value)
    except ValueError:
        logger.warning(
            f"error when parsing {annotation!r} annotation for the pod "
            f"{pod_name}: expected boolean value, got {value!r}"
        )
        return False


def mark_rolling_update_flag(
    pod: dict[str, Any],
    reason: str,
    *,
    k8s_client: Any,
    annotation: str,
    interval: float = 1.0,
    timeout: float = 5.0,
    logger: Any | None = None,
) -> None:
    """Set the rolling-update flag on a pod unless it is already set.

    Parameters
    ----------
    pod : `dict`
        The Pod resource.
    reason : `str`
        Why the pod needs to be recreated; only logged.
    k8s_client
        A Kubernetes client (see `pgfailoveroperator.k8s.create_k8sclient`).
    annotation : `str`
        The annotation key of the flag.
    interval : `float`
        Seconds between patch attempts.
    timeout : `float`
        Total seconds to keep retrying the patch.
    logger : `logging.Logger`, optional
        Logger to use for logging messages.

    Raises
    ------
    pgfailoveroperator.exceptions.PodMigrationError
        Raised if the pod could not be patched within the retry budget.
    """
    if logger is None:
        logger = structlog.getLogger(__name__)

    if get_rolling_update_flag(pod, annotation=annotation, logger=logger):
        return

    pod_name = NamespacedName.from_pod(pod)
    logger.debug(
        f"mark rolling update annotation for {pod_name}: reason {reason}"
    )
    patch = rolling_update_patch(annotation, True)

    def _patch() -> bool:
        patch_pod(
            namespace=pod_name.namespace,
            name=pod_name.name,
            patch=patch,
            k8s_client=k8s_client,
        )
        return True

    try:
        retry(_patch, interval=interval, timeout=timeout, logger=logger)
    except RetryTimeoutError as e:
        raise PodMigrationError(
            f"could not patch pod rolling update flag {patch}: {e}"
        ) from e

    # Reflect the change locally so repeated calls stay idempotent.
    annotations = pod["metadata"].get("annotations") or {}
    annotations[annotation] = "true"
    pod["metadata"]["annotations"] = annotations
