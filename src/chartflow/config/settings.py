"""
Application settings using Pydantic.

Provides environment-based configuration loading with CHARTFLOW_ prefix.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CHARTFLOW_",
    )

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # App-of-apps repository
    github_repo: str = "https://github.com/Flamingo-CX/openframe"
    github_branch: str = "main"
    github_username: str | None = None
    github_token: str | None = None

    # Helm values
    base_values_file: str = "helm-values.yaml"
    temp_values_file: str = "helm-values-tmp.yaml"

    # Certificates (empty means ~/.config/chartflow/certs)
    cert_dir: str = ""

    # Installation phase
    install_timeout_minutes: int = 60
    install_max_attempts: int = 3
    install_retry_initial_delay: float = 5.0
    install_retry_max_delay: float = 60.0
    install_retry_multiplier: float = 2.0

    # ArgoCD
    argocd_namespace: str = "argocd"
    argocd_chart_version: str = "8.1.4"
    argocd_repo_url: str = "https://argoproj.github.io/argo-helm"
    app_of_apps_chart_path: str = "manifests/app-of-apps"

    # Application sync wait
    sync_poll_interval: float = 10.0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
