"""Local TLS certificate regeneration with mkcert."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import structlog

from chartflow.core.errors import ProviderError

logger = structlog.get_logger()

CERT_FILE = "localhost.pem"
KEY_FILE = "localhost-key.pem"
HOSTS = ("localhost", "127.0.0.1", "::1")


class MkcertRegenerator:
    """Installs the mkcert CA and writes a fresh localhost certificate."""

    def __init__(self, cert_dir: Path, dry_run: bool = False) -> None:
        self.cert_dir = Path(cert_dir)
        self.dry_run = dry_run

    def regenerate(self) -> None:
        if self.dry_run:
            logger.info("certificates_skipped", dry_run=True)
            return
        if shutil.which("mkcert") is None:
            raise ProviderError("mkcert not found in PATH", details={"command": "mkcert"})

        self.cert_dir.mkdir(parents=True, exist_ok=True)
        self._run(["mkcert", "-install"])
        self._run(
            [
                "mkcert",
                "-cert-file", str(self.cert_dir / CERT_FILE),
                "-key-file", str(self.cert_dir / KEY_FILE),
                *HOSTS,
            ]
        )
        logger.info("certificates_regenerated", cert_dir=str(self.cert_dir))

    @staticmethod
    def _run(args: list[str]) -> None:
        result = subprocess.run(args, capture_output=True, text=True)
        if result.returncode != 0:
            raise ProviderError(
                f"{' '.join(args)} failed: {result.stderr.strip()}",
                details={"returncode": result.returncode},
            )
