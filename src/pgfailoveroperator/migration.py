"""Move Postgres pods off retiring nodes and recreate them in a safe order."""

from __future__ import annotations

__all__ = ("ClusterMigrator",)

import threading
from collections.abc import Callable, Iterable
from typing import Any

import structlog
from kubernetes.client.exceptions import ApiException

from pgfailoveroperator.config import MigrationConfig
from pgfailoveroperator.endoflife import pod_is_end_of_life
from pgfailoveroperator.exceptions import (
    PatroniError,
    PodMigrationError,
    PreconditionError,
    RetryTimeoutError,
)
from pgfailoveroperator.k8s import (
    delete_pod,
    get_pod,
    get_statefulset,
    list_pods,
)
from pgfailoveroperator.names import NamespacedName, PostgresRole
from pgfailoveroperator.podevents import (
    PodEventBus,
    wait_for_pod_deletion,
    wait_for_pod_label,
)
from pgfailoveroperator.retry import retry
from pgfailoveroperator.switchover import (
    get_patroni_member_data,
    get_switchover_candidate,
)

_SWITCHOVER_ERRORS = (
    ApiException,
    PatroniError,
    PodMigrationError,
    RetryTimeoutError,
)


class ClusterMigrator:
    """Pod lifecycle operations for a single Postgres cluster.

    One instance exists per cluster. It is not safe to run two operations on
    the same instance concurrently; callers hold `lock` for the duration of
    an operation.

    Parameters
    ----------
    namespace : `str`
        The namespace of the cluster.
    cluster_name : `str`
        The cluster name, which is also the StatefulSet name.
    k8s_client
        A Kubernetes client (see `pgfailoveroperator.k8s.create_k8sclient`).
    patroni : `pgfailoveroperator.patroni.PatroniClient`
        The Patroni API client.
    pod_events : `pgfailoveroperator.podevents.PodEventBus`
        The bus fed by the pod watch.
    config : `pgfailoveroperator.config.MigrationConfig`, optional
        Labels, annotation keys and time budgets.
    failover : callable, optional
        ``failover(master_pod, candidate_name)`` promotes the candidate.
        Defaults to `switchover`.
    logger : `logging.Logger`, optional
        Logger to use for logging messages.
    """

    def __init__(
        self,
        *,
        namespace: str,
        cluster_name: str,
        k8s_client: Any,
        patroni: Any,
        pod_events: PodEventBus,
        config: MigrationConfig | None = None,
        failover: Callable[[dict[str, Any], NamespacedName], None]
        | None = None,
        logger: Any | None = None,
    ) -> None:
        self.namespace = namespace
        self.cluster_name = cluster_name
        self.k8s_client = k8s_client
        self.patroni = patroni
        self.pod_events = pod_events
        self.config = config or MigrationConfig()
        self.failover = failover or self.switchover
        if logger is None:
            logger = structlog.getLogger(__name__)
        self.logger = logger
        self.lock = threading.Lock()
        self.statefulset: dict[str, Any] | None = None
        """Cached StatefulSet of the cluster, fetched on first need and
        replaced by `refresh_statefulset` when the StatefulSet changes.
        """

    def refresh_statefulset(self, statefulset: dict[str, Any]) -> None:
        """Replace the cached StatefulSet with a newly observed version."""
        replicas = statefulset["spec"].get("replicas", 1)
        self.logger.debug(
            f"statefulset of cluster {self.cluster_name} now has "
            f"{replicas} replicas"
        )
        self.statefulset = statefulset

    def labels(self, role: PostgresRole | None = None) -> dict[str, str]:
        """Labels selecting the pods of this cluster, optionally by role."""
        labels = dict(self.config.cluster_labels)
        labels[self.config.cluster_name_label] = self.cluster_name
        if role is not None:
            labels[self.config.pod_role_label] = PostgresRole(role).value
        return labels

    def pod_role(self, pod: dict[str, Any]) -> str | None:
        labels = pod["metadata"].get("labels") or {}
        return labels.get(self.config.pod_role_label)

    def list_pods(self) -> list[dict[str, Any]]:
        try:
            return list_pods(
                namespace=self.namespace,
                labels=self.labels(),
                k8s_client=self.k8s_client,
            )
        except ApiException as e:
            raise PodMigrationError(f"could not get list of pods: {e}") from e

    def get_role_pods(self, role: PostgresRole) -> list[dict[str, Any]]:
        """List the pods of this cluster carrying a role label.

        Raises
        ------
        pgfailoveroperator.exceptions.PodMigrationError
            Raised if listing fails, or if more than one primary is found.
        """
        try:
            pods = list_pods(
                namespace=self.namespace,
                labels=self.labels(role),
                k8s_client=self.k8s_client,
            )
        except ApiException as e:
            raise PodMigrationError(f"could not get list of pods: {e}") from e

        if PostgresRole(role) == PostgresRole.PRIMARY and len(pods) > 1:
            raise PodMigrationError("too many primaries")
        return pods

    def _is_end_of_life(self, pod: dict[str, Any]) -> bool:
        try:
            return pod_is_end_of_life(
                pod,
                k8s_client=self.k8s_client,
                readiness_label=self.config.node_readiness_label,
            )
        except ApiException as e:
            raise PodMigrationError(
                f"could not get node {pod['spec'].get('nodeName')!r}: {e}"
            ) from e

    def _get_pod(self, pod_name: NamespacedName) -> dict[str, Any]:
        return get_pod(
            namespace=pod_name.namespace,
            name=pod_name.name,
            k8s_client=self.k8s_client,
        )

    def _delete_with_retry(self, pod_name: NamespacedName) -> None:
        def _delete() -> bool:
            delete_pod(
                namespace=pod_name.namespace,
                name=pod_name.name,
                k8s_client=self.k8s_client,
            )
            return True

        try:
            retry(
                _delete,
                interval=self.config.kube_retry_interval,
                timeout=self.config.kube_retry_timeout,
                retry_on=ApiException,
                logger=self.logger,
            )
        except RetryTimeoutError as e:
            raise PodMigrationError(f"could not delete pod: {e}") from e

    def delete_pod(self, pod_name: NamespacedName) -> None:
        """Delete a pod and wait until the deletion is observed."""
        channel = self.pod_events.subscribe(pod_name)
        try:
            self._delete_with_retry(pod_name)
            wait_for_pod_deletion(
                channel, timeout=self.config.pod_deletion_wait_timeout
            )
        finally:
            self.pod_events.unsubscribe(pod_name)

    def delete_pods(self) -> None:
        """Delete every pod of the cluster, one at a time.

        A pod that cannot be deleted is logged and skipped.
        """
        self.logger.debug("deleting pods")
        pods = self.list_pods()
        for pod in pods:
            pod_name = NamespacedName.from_pod(pod)
            self.logger.debug(f"deleting pod {pod_name}")
            try:
                self.delete_pod(pod_name)
            except PodMigrationError as e:
                self.logger.error(f"could not delete pod {pod_name}: {e}")
            else:
                self.logger.info(f"pod {pod_name} has been deleted")
        if pods:
            self.logger.debug("pods have been deleted")
        else:
            self.logger.debug("no pods to delete")

    def recreate_pod(self, pod_name: NamespacedName) -> dict[str, Any]:
        """Delete a pod and wait for the StatefulSet to bring it back.

        Returns
        -------
        pod : `dict`
            The replacement pod, once it carries a role label.
        """
        stop = threading.Event()
        channel = self.pod_events.subscribe(pod_name)
        try:
            self._delete_with_retry(pod_name)
            wait_for_pod_deletion(
                channel, timeout=self.config.pod_deletion_wait_timeout
            )
            pod = wait_for_pod_label(
                channel,
                stop,
                role_label=self.config.pod_role_label,
                timeout=self.config.pod_label_wait_timeout,
            )
        finally:
            stop.set()
            self.pod_events.unsubscribe(pod_name)

        self.logger.info(f"pod {pod_name} has been recreated")
        return pod

    def move_pod_from_end_of_life_node(
        self, pod: dict[str, Any]
    ) -> dict[str, Any]:
        """Recreate a pod if its node is being retired.

        Returns
        -------
        pod : `dict`
            The original pod if its node is live, otherwise the replacement.

        Raises
        ------
        pgfailoveroperator.exceptions.PodMigrationError
            Raised if the pod cannot be recreated or lands on the same node.
        """
        pod_name = NamespacedName.from_pod(pod)
        node_name = pod["spec"].get("nodeName")

        if not self._is_end_of_life(pod):
            self.logger.info(
                f"check failed: pod {pod_name} is already on a live node"
            )
            return pod

        self.logger.info(
            f"moving pod {pod_name} out of the end-of-life node {node_name}"
        )
        try:
            new_pod = self.recreate_pod(pod_name)
        except PodMigrationError as e:
            raise PodMigrationError(f"could not move pod: {e}") from e

        new_node_name = new_pod["spec"].get("nodeName")
        if new_node_name == node_name:
            raise PodMigrationError(
                f"pod {pod_name} remained on the same node"
            )

        if self._is_end_of_life(new_pod):
            self.logger.warning(
                f"pod {pod_name} moved to end-of-life node {new_node_name}"
            )
            return new_pod

        self.logger.info(
            f"pod {pod_name} moved from node {node_name} to node "
            f"{new_node_name}"
        )
        return new_pod

    def get_switchover_candidate(
        self, master_pod: dict[str, Any]
    ) -> NamespacedName:
        return get_switchover_candidate(
            master_pod,
            patroni=self.patroni,
            interval=self.config.patroni_api_check_interval,
            timeout=self.config.patroni_api_check_timeout,
            logger=self.logger,
        )

    def switchover(
        self, master_pod: dict[str, Any], candidate: NamespacedName
    ) -> None:
        """Promote ``candidate`` and wait until it is labelled primary.

        Raises
        ------
        pgfailoveroperator.exceptions.PodMigrationError
            Raised if the candidate is not ready, or the promotion is not
            observed in time.
        pgfailoveroperator.exceptions.PatroniError
            Raised if Patroni rejects the switchover.
        """
        master_name = NamespacedName.from_pod(master_pod)
        self.logger.info(f"switching over from {master_name} to {candidate}")

        try:
            candidate_pod = self._get_pod(candidate)
        except ApiException as e:
            raise PodMigrationError(
                f"could not get candidate pod {candidate}: {e}"
            ) from e
        get_patroni_member_data(
            candidate_pod,
            patroni=self.patroni,
            interval=self.config.patroni_api_check_interval,
            timeout=self.config.patroni_api_check_timeout,
            logger=self.logger,
        )

        stop = threading.Event()
        channel = self.pod_events.subscribe(candidate)
        try:
            self.patroni.switchover(master_pod, candidate.name)
            wait_for_pod_label(
                channel,
                stop,
                role_label=self.config.pod_role_label,
                role=PostgresRole.PRIMARY,
                timeout=self.config.pod_label_wait_timeout,
            )
        finally:
            stop.set()
            self.pod_events.unsubscribe(candidate)

        self.logger.info(f"successfully switched over to {candidate}")

    def migrate_master_pod(self, pod_name: NamespacedName) -> None:
        """Migrate the primary off an end-of-life node via a switchover.

        With replicas, the best replica is moved to a live node if needed
        and promoted. A single-instance cluster has no choice but to recreate
        the primary, which causes downtime.

        Raises
        ------
        pgfailoveroperator.exceptions.PodMigrationError
            Raised if any step fails; the caller retries later.
        """
        try:
            old_master = self._get_pod(pod_name)
        except ApiException as e:
            raise PodMigrationError(f"could not get pod: {e}") from e

        self.logger.info(f"starting process to migrate master pod {pod_name}")

        if not self._is_end_of_life(old_master):
            self.logger.debug(
                "no action needed: master pod is already on a live node"
            )
            return

        if self.pod_role(old_master) != PostgresRole.PRIMARY.value:
            self.logger.warning(
                f"no action needed: pod {pod_name} is not the master (anymore)"
            )
            return

        if self.statefulset is None:
            try:
                self.statefulset = get_statefulset(
                    namespace=self.namespace,
                    name=self.cluster_name,
                    k8s_client=self.k8s_client,
                )
            except ApiException as e:
                raise PodMigrationError(
                    f"could not retrieve cluster statefulset: {e}"
                ) from e

        candidate_name: NamespacedName | None = None
        if self.statefulset["spec"].get("replicas", 1) > 1:
            try:
                candidate_name = self.get_switchover_candidate(old_master)
            except PodMigrationError as e:
                raise PodMigrationError(
                    "could not find suitable replica pod as candidate for "
                    f"failover: {e}"
                ) from e
        else:
            self.logger.warning(
                f"migrating single pod cluster {self.cluster_name}, this will "
                "cause downtime of the Postgres cluster until pod is back"
            )

        candidate_pod: dict[str, Any] | None = None
        if candidate_name is not None:
            try:
                candidate_pod = self._get_pod(candidate_name)
            except ApiException as e:
                if e.status != 404:
                    raise PodMigrationError(
                        f"could not get master candidate pod: {e}"
                    ) from e
                # A vanished candidate is handled like a cluster without
                # replicas.
                self.logger.warning(
                    f"master candidate pod {candidate_name} not found, "
                    f"recreating {pod_name} without a switchover"
                )

        if candidate_pod is None:
            self.move_pod_from_end_of_life_node(old_master)
            return

        self.move_pod_from_end_of_life_node(candidate_pod)

        def _switchover() -> bool:
            try:
                self.failover(old_master, candidate_name)
            except _SWITCHOVER_ERRORS as e:
                self.logger.error(
                    f"could not failover to pod {candidate_name}: {e}"
                )
                return False
            return True

        try:
            retry(
                _switchover,
                interval=self.config.switchover_retry_interval,
                timeout=self.config.switchover_retry_timeout,
                logger=self.logger,
            )
        except RetryTimeoutError as e:
            raise PodMigrationError(f"could not migrate master pod: {e}") from e

    def migrate_replica_pod(
        self, pod_name: NamespacedName, from_node: str
    ) -> None:
        """Recreate a replica pod that still runs on ``from_node``.

        Raises
        ------
        pgfailoveroperator.exceptions.PreconditionError
            Raised if the pod is not a replica.
        pgfailoveroperator.exceptions.PodMigrationError
            Raised if the pod cannot be moved.
        """
        try:
            replica_pod = self._get_pod(pod_name)
        except ApiException as e:
            raise PodMigrationError(f"could not get pod: {e}") from e

        self.logger.info(f"migrating replica pod {pod_name} to live node")

        node_name = replica_pod["spec"].get("nodeName")
        if node_name != from_node:
            self.logger.info(
                f"check failed: pod {pod_name} has already migrated to node "
                f"{node_name}"
            )
            return

        if self.pod_role(replica_pod) != PostgresRole.REPLICA.value:
            raise PreconditionError(
                f"check failed: pod {pod_name} is not a replica"
            )

        self.move_pod_from_end_of_life_node(replica_pod)

    def recreate_pods(
        self,
        pods: Iterable[dict[str, Any]],
        switchover_candidates: Iterable[NamespacedName] = (),
    ) -> None:
        """Recreate a set of pods, replicas first and the primary last.

        Before the old primary is recreated, a switchover hands its role to a
        replica unless a new primary already appeared while recreating the
        replicas.

        Parameters
        ----------
        pods : iterable of `dict`
            The pods to recreate.
        switchover_candidates : iterable of `NamespacedName`
            Replicas known to be up to date that were not recreated here.

        Raises
        ------
        pgfailoveroperator.exceptions.PodMigrationError
            Raised on the first pod that could not be recreated, or if the
            switchover fails. Pods recreated so far stay recreated.
        """
        pods = list(pods)
        self.logger.info(f"there are {len(pods)} pods in the cluster to recreate")

        master_pod: dict[str, Any] | None = None
        new_master_pod: dict[str, Any] | None = None
        replicas = list(switchover_candidates)

        for pod in pods:
            if self.pod_role(pod) == PostgresRole.PRIMARY.value:
                master_pod = pod
                continue

            pod_name = NamespacedName.from_pod(pod)
            try:
                new_pod = self.recreate_pod(pod_name)
            except PodMigrationError as e:
                raise PodMigrationError(
                    f"could not recreate replica pod {pod_name}: {e}"
                ) from e

            new_role = self.pod_role(new_pod)
            if new_role == PostgresRole.REPLICA.value:
                replicas.append(pod_name)
            elif new_role == PostgresRole.PRIMARY.value:
                new_master_pod = new_pod

        if master_pod is None:
            return

        master_name = NamespacedName.from_pod(master_pod)
        if new_master_pod is None and replicas:
            try:
                candidate = self.get_switchover_candidate(master_pod)
            except PodMigrationError as e:
                # The old primary keeps its rolling update flag, so the
                # switchover is retried on the next sync.
                raise PodMigrationError(f"skipping switchover: {e}") from e
            try:
                self.failover(master_pod, candidate)
            except _SWITCHOVER_ERRORS as e:
                raise PodMigrationError(
                    f"could not perform switch over: {e}"
                ) from e
        elif new_master_pod is None:
            self.logger.warning(
                "cannot perform switch over before re-creating the pod: "
                "no replicas"
            )

        self.logger.info(f"recreating old master pod {master_name}")
        try:
            self.recreate_pod(master_name)
        except PodMigrationError as e:
            raise PodMigrationError(
                f"could not recreate old master pod {master_name}: {e}"
            ) from e
