"""Client for the Patroni REST API served by every Postgres pod."""

from __future__ import annotations

__all__ = ("ClusterMember", "MemberData", "PatroniClient")

import math
from dataclasses import dataclass
from typing import Any

import requests
import structlog

from pgfailoveroperator.exceptions import PatroniError
from pgfailoveroperator.names import NamespacedName


def _parse_lag(value: Any) -> float:
    # Patroni reports "unknown" for members it cannot measure.
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.inf


@dataclass
class ClusterMember:
    """A member of the Patroni cluster as reported by ``GET /cluster``."""

    name: str
    role: str
    state: str
    lag: float = 0.0
    host: str = ""
    api_url: str = ""
    timeline: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClusterMember:
        return cls(
            name=data["name"],
            role=data.get("role", ""),
            state=data.get("state", ""),
            lag=_parse_lag(data.get("lag", 0)),
            host=data.get("host", ""),
            api_url=data.get("api_url", ""),
            timeline=int(data.get("timeline", 0) or 0),
        )


@dataclass
class MemberData:
    """Status of a single member as reported by ``GET /patroni``."""

    role: str
    state: str
    version: str = ""
    scope: str = ""
    pending_restart: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemberData:
        patroni = data.get("patroni") or {}
        return cls(
            role=data.get("role", ""),
            state=data.get("state", ""),
            version=patroni.get("version", ""),
            scope=patroni.get("scope", ""),
            pending_restart=bool(data.get("pending_restart", False)),
        )


class PatroniClient:
    """Talks to the Patroni API of a pod through its pod IP.

    Parameters
    ----------
    session : `requests.Session`, optional
        HTTP session to reuse. A new one is created if not given.
    port : `int`
        The Patroni API port.
    timeout : `float`
        Per-request timeout in seconds.
    logger : `logging.Logger`, optional
        Logger to use for logging messages.
    """

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        port: int = 8008,
        timeout: float = 5.0,
        logger: Any | None = None,
    ) -> None:
        self.session = session or requests.Session()
        self.port = port
        self.timeout = timeout
        self.logger = logger or structlog.getLogger(__name__)

    def _url(self, pod: dict[str, Any], path: str) -> str:
        pod_ip = (pod.get("status") or {}).get("podIP")
        if not pod_ip:
            raise PatroniError(
                f"pod {NamespacedName.from_pod(pod)} has no IP address"
            )
        return f"http://{pod_ip}:{self.port}/{path}"

    def _request(
        self,
        method: str,
        pod: dict[str, Any],
        path: str,
        body: dict[str, Any] | None = None,
    ) -> requests.Response:
        url = self._url(pod, path)
        try:
            response = self.session.request(
                method, url, json=body, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise PatroniError(f"{method} {url} failed: {e}") from e
        if response.status_code != 200:
            raise PatroniError(
                f"{method} {url} returned {response.status_code}: "
                f"{response.text}"
            )
        return response

    def get_config(
        self, pod: dict[str, Any]
    ) -> tuple[dict[str, Any], dict[str, str]]:
        """Get the dynamic Patroni configuration of the cluster.

        Returns
        -------
        config : `dict`
            The Patroni configuration without the Postgres parameters.
        parameters : `dict`
            The ``postgresql.parameters`` section, with values as strings.
        """
        data = self._request("GET", pod, "config").json()
        postgresql = dict(data.pop("postgresql", None) or {})
        parameters = {
            key: str(value)
            for key, value in (postgresql.pop("parameters", None) or {}).items()
        }
        if postgresql:
            data["postgresql"] = postgresql
        return data, parameters

    def get_member_data(self, pod: dict[str, Any]) -> MemberData:
        """Get the status of the member running in a pod."""
        return MemberData.from_dict(self._request("GET", pod, "patroni").json())

    def get_cluster_members(self, pod: dict[str, Any]) -> list[ClusterMember]:
        """Get all members of the cluster the pod belongs to."""
        data = self._request("GET", pod, "cluster").json()
        return [
            ClusterMember.from_dict(member)
            for member in data.get("members", [])
        ]

    def switchover(self, master_pod: dict[str, Any], candidate: str) -> None:
        """Ask Patroni to hand the leader role over to ``candidate``.

        Parameters
        ----------
        master_pod : `dict`
            The current primary pod; its API receives the request.
        candidate : `str`
            Member name (pod name) of the replica to promote.
        """
        leader = master_pod["metadata"]["name"]
        self.logger.debug(f"switching over from {leader!r} to {candidate!r}")
        self._request(
            "POST",
            master_pod,
            "failover",
            body={"leader": leader, "member": candidate},
        )
