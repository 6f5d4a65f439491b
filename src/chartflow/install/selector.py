"""Cluster selection."""

from __future__ import annotations

import inspect
import json
import shutil
import subprocess
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence, Union

import structlog

from chartflow.core.errors import ConfigurationError, ProviderError

logger = structlog.get_logger()

NONE_CHOICE = "none"


class ClusterLister(Protocol):
    def list_clusters(self) -> List[str]:
        ...


class K3dClusterLister:
    """Lists local k3d clusters."""

    def list_clusters(self) -> List[str]:
        if shutil.which("k3d") is None:
            raise ProviderError("k3d not found in PATH", details={"command": "k3d"})
        result = subprocess.run(
            ["k3d", "cluster", "list", "-o", "json"],
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            raise ProviderError(
                f"failed to list clusters: {result.stderr.strip()}",
                details={"returncode": result.returncode},
            )
        try:
            clusters = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as exc:
            raise ProviderError(f"unexpected k3d output: {exc}") from exc
        return [c["name"] for c in clusters if c.get("name")]


Chooser = Callable[[str, List[str]], Union[Optional[str], Awaitable[Optional[str]]]]


class ClusterSelector:
    """Resolves the target cluster from arguments or an interactive choice.

    Returns "" when the user picks "none" from the list.
    """

    def __init__(self, lister: ClusterLister, chooser: Optional[Chooser] = None) -> None:
        self._lister = lister
        self._chooser = chooser

    async def select(self, args: Sequence[str], verbose: bool) -> str:
        clusters = self._lister.list_clusters()
        if not clusters:
            raise ConfigurationError("no clusters found; create a cluster first")

        if args:
            name = args[0]
            if name not in clusters:
                raise ConfigurationError(
                    f"cluster '{name}' not found",
                    details={"cluster": name, "available": ", ".join(clusters)},
                )
            return name

        if len(clusters) == 1:
            if verbose:
                logger.info("cluster_auto_selected", cluster=clusters[0])
            return clusters[0]

        if self._chooser is None:
            raise ConfigurationError(
                "multiple clusters found; pass the cluster name explicitly",
                details={"available": ", ".join(clusters)},
            )

        choice = self._chooser("Select a cluster for installation", [*clusters, NONE_CHOICE])
        if inspect.isawaitable(choice):
            choice = await choice
        if not choice or choice == NONE_CHOICE:
            return ""
        return choice
