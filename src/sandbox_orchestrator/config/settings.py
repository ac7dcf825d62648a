"""Application settings."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "sandbox-orchestrator"
    log_level: str = "INFO"

    # HTTP server and the CLI client that talks to it.
    api_host: str = "127.0.0.1"
    api_port: int = Field(default=8000, ge=1, le=65535)
    api_base_url: str = "http://127.0.0.1:8000"
    api_timeout_s: float = Field(default=30.0, ge=1.0)

    # Execution context (Docker provider).
    docker_binary: str = "docker"
    sandbox_image: str = "ghcr.io/sst/opencode:latest"
    sandbox_name_prefix: str = "sbx-"
    command_timeout_s: float = Field(default=120.0, ge=1.0)
    cleanup_on_failure: bool = False

    # Repository checkout inside the context.
    repo_dir: str = "/workspace/repo"
    default_branch: str = "main"

    # Agent server inside the context.
    agent_command: str = "opencode serve"
    agent_port: int = Field(default=4096, ge=1, le=65535)
    agent_hostname: str = "0.0.0.0"
    agent_path: str = "/usr/local/bin:/usr/bin:/bin"
    agent_home: str = "/root"
    agent_ca_bundle_path: str = "/etc/ssl/certs/ca-certificates.crt"
    agent_tls_insecure: bool = False

    # Readiness polling budget.
    ready_max_attempts: int = Field(default=30, ge=1)
    ready_interval_s: float = Field(default=1.0, ge=0.0)
    ready_probe_timeout_s: float = Field(default=2.0, gt=0.0)

    session_title_chars: int = Field(default=50, ge=1)

    model_config = SettingsConfigDict(
        env_prefix="SANDBOX_ORCHESTRATOR_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def agent_base_url(self) -> str:
        return f"http://localhost:{self.agent_port}"

    def agent_env(self) -> dict[str, str]:
        env = {
            "PATH": self.agent_path,
            "HOME": self.agent_home,
            "NODE_TLS_REJECT_UNAUTHORIZED": "0" if self.agent_tls_insecure else "1",
        }
        if self.agent_ca_bundle_path:
            env["NODE_EXTRA_CA_CERTS"] = self.agent_ca_bundle_path
        return env


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
