"""
Helm values files.

The base values file (helm-values.yaml) is persistent and only ever read.
Each run writes its effective values to a throwaway temp file
(helm-values-tmp.yaml) that the workflow registers with the ledger.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
import yaml

from chartflow.core.errors import ConfigurationError
from chartflow.install.models import ChartConfiguration

logger = structlog.get_logger()

DEFAULT_BASE_VALUES: Dict[str, Any] = {
    "global": {
        "repoBranch": "main",
    },
    "registry": {
        "docker": {
            "username": "",
            "password": "",
            "email": "",
        },
    },
    "ingress": {
        "type": "localhost",
    },
}


class HelmValuesStore:
    """Reads the base values file and writes the per-run temp values file."""

    def __init__(
        self,
        base_path: str | Path = "helm-values.yaml",
        temp_path: str | Path = "helm-values-tmp.yaml",
    ) -> None:
        self.base_path = Path(base_path)
        self.temp_path = Path(temp_path)

    def load_or_create_base_values(self) -> Dict[str, Any]:
        """Load the base values, creating the file with defaults when missing."""
        if not self.base_path.exists():
            logger.info("base_values_created", path=str(self.base_path))
            self._write(self.base_path, DEFAULT_BASE_VALUES)
            return _copy(DEFAULT_BASE_VALUES)

        try:
            with open(self.base_path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError(
                f"failed to read base values {self.base_path}: {exc}",
                details={"path": str(self.base_path)},
            ) from exc

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"base values {self.base_path} must be a mapping",
                details={"path": str(self.base_path)},
            )
        return data

    def write_temp_values(self, values: Dict[str, Any]) -> Path:
        """Write the effective values for this run and return the temp path."""
        self._write(self.temp_path, values)
        return self.temp_path

    def dry_run_configuration(self) -> ChartConfiguration:
        """Minimal configuration built from the base values without prompting."""
        return ChartConfiguration(
            base_values_path=self.base_path,
            temp_values_path=self.temp_path,
            existing_values=self.load_or_create_base_values(),
        )

    @staticmethod
    def _write(path: Path, values: Dict[str, Any]) -> None:
        """Replace ``path`` atomically; on any failure the old file (or none) remains."""
        try:
            content = yaml.safe_dump(values, default_flow_style=False, sort_keys=False)
        except yaml.YAMLError as exc:
            raise ConfigurationError(
                f"failed to render values file {path}: {exc}", details={"path": str(path)}
            ) from exc

        staging: Optional[str] = None
        try:
            fd, staging = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
            with os.fdopen(fd, "w") as f:
                f.write(content)
            os.replace(staging, path)
        except OSError as exc:
            if staging is not None:
                with contextlib.suppress(OSError):
                    os.unlink(staging)
            raise ConfigurationError(
                f"failed to write values file {path}: {exc}", details={"path": str(path)}
            ) from exc


class ValuesFileCollector:
    """Non-interactive collector: base values plus request overrides."""

    def __init__(self, store: HelmValuesStore, branch: Optional[str] = None) -> None:
        self._store = store
        self._branch = branch

    def collect(self) -> ChartConfiguration:
        values = self._store.load_or_create_base_values()
        modified = []

        global_values = values.setdefault("global", {})
        if self._branch and global_values.get("repoBranch") != self._branch:
            global_values["repoBranch"] = self._branch
            modified.append("branch")

        temp_path = self._store.write_temp_values(values)
        logger.debug("values_collected", temp_path=str(temp_path), modified=modified)
        return ChartConfiguration(
            base_values_path=self._store.base_path,
            temp_values_path=temp_path,
            existing_values=values,
            modified_sections=modified,
            branch=self._branch,
        )


def _copy(values: Dict[str, Any]) -> Dict[str, Any]:
    return yaml.safe_load(yaml.safe_dump(values))
