"""Choose the replica to promote and query Patroni with retries."""

__all__ = (
    "get_patroni_config",
    "get_patroni_member_data",
    "get_switchover_candidate",
    "select_switchover_candidate",
)

from collections.abc import Iterable
from typing import Any

import structlog

from pgfailoveroperator.exceptions import (
    NoSwitchoverCandidateError,
    PatroniError,
    PodMigrationError,
    RetryTimeoutError,
)
from pgfailoveroperator.names import NamespacedName, PostgresRole
from pgfailoveroperator.patroni import ClusterMember, MemberData
from pgfailoveroperator.retry import retry

_LEADER_ROLES = frozenset(
    (PostgresRole.LEADER.value, PostgresRole.STANDBY_LEADER.value)
)


def select_switchover_candidate(
    members: Iterable[ClusterMember],
) -> ClusterMember:
    """Rank cluster members and return the best promotion target.

    Leaders and members that are not ``running`` are never chosen. If any
    synchronous standby is eligible, synchronous mode is assumed and only
    synchronous standbys are considered. The member with the lowest
    replication lag wins.

    Raises
    ------
    pgfailoveroperator.exceptions.NoSwitchoverCandidateError
        Raised if no member is eligible.
    """
    candidates = []
    sync_candidates = []
    for member in members:
        if member.role in _LEADER_ROLES or member.state != "running":
            continue
        candidates.append(member)
        if member.role == PostgresRole.SYNC_STANDBY.value:
            sync_candidates.append(member)

    pool = sync_candidates or candidates
    if not pool:
        raise NoSwitchoverCandidateError("no switchover candidate found")
    return sorted(pool, key=lambda member: member.lag)[0]


def get_switchover_candidate(
    master_pod: dict[str, Any],
    *,
    patroni: Any,
    interval: float,
    timeout: float,
    logger: Any | None = None,
) -> NamespacedName:
    """Find the replica to promote in place of ``master_pod``.

    Parameters
    ----------
    master_pod : `dict`
        The current primary pod.
    patroni : `pgfailoveroperator.patroni.PatroniClient`
        The Patroni API client.
    interval : `float`
        Seconds between attempts to list the cluster members.
    timeout : `float`
        Total seconds to keep trying.
    logger : `logging.Logger`, optional
        Logger to use for logging messages.

    Returns
    -------
    candidate : `NamespacedName`
        The pod to promote, in the namespace of ``master_pod``.

    Raises
    ------
    pgfailoveroperator.exceptions.PodMigrationError
        Raised if the members cannot be listed.
    pgfailoveroperator.exceptions.NoSwitchoverCandidateError
        Raised if no member is eligible.
    """
    if logger is None:
        logger = structlog.getLogger(__name__)

    members: list[ClusterMember] = []

    def _get_members() -> bool:
        members[:] = patroni.get_cluster_members(master_pod)
        return True

    try:
        retry(
            _get_members,
            interval=interval,
            timeout=timeout,
            retry_on=PatroniError,
            logger=logger,
        )
    except RetryTimeoutError as e:
        raise PodMigrationError(
            f"failed to get Patroni cluster members: {e}"
        ) from e

    candidate = select_switchover_candidate(members)
    logger.debug(
        f"selected {candidate.name} ({candidate.role}, lag {candidate.lag}) "
        "as switchover candidate"
    )
    return NamespacedName(
        namespace=master_pod["metadata"]["namespace"], name=candidate.name
    )


def get_patroni_config(
    pod: dict[str, Any],
    *,
    patroni: Any,
    interval: float,
    timeout: float,
    logger: Any | None = None,
) -> tuple[dict[str, Any], dict[str, str]]:
    """Get the Patroni configuration and Postgres parameters via a pod."""
    try:
        return retry(
            lambda: patroni.get_config(pod),
            interval=interval,
            timeout=timeout,
            retry_on=PatroniError,
            logger=logger,
        )
    except RetryTimeoutError as e:
        raise PodMigrationError(
            f"could not get Postgres config from pod "
            f"{NamespacedName.from_pod(pod)}: {e}"
        ) from e


def get_patroni_member_data(
    pod: dict[str, Any],
    *,
    patroni: Any,
    interval: float,
    timeout: float,
    logger: Any | None = None,
) -> MemberData:
    """Get the Patroni member status of a pod.

    Raises
    ------
    pgfailoveroperator.exceptions.PodMigrationError
        Raised if the status cannot be fetched, or if the member is still
        being created and so can neither leave nor take over the primary role.
    """
    try:
        member_data = retry(
            lambda: patroni.get_member_data(pod),
            interval=interval,
            timeout=timeout,
            retry_on=PatroniError,
            logger=logger,
        )
    except RetryTimeoutError as e:
        raise PodMigrationError(f"could not get member data: {e}") from e

    if member_data.state == "creating replica":
        raise PodMigrationError("replica currently being initialized")
    return member_data
