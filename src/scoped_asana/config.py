"""
Application configuration loaded from environment variables.

Uses pydantic-settings to define typed configuration that automatically reads
from environment variables (prefix ASANA_) or a local .env file.

Settings are read exactly once at startup. The values that matter for access
control are then frozen into two small immutable objects that are passed by
reference to the rest of the server:

- AllowedScope: the single workspace + project this process may touch
- AccessMode: the read-only / project-restricted flags used by the PolicyGate

Nothing downstream reads the environment again.
"""

from dataclasses import dataclass
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings

ASANA_API_BASE_URL = "https://app.asana.com/api/1.0"


class ConfigurationError(Exception):
    """Raised when a required setting is missing or invalid."""


@dataclass(frozen=True)
class AllowedScope:
    """
    The one workspace and one project this server instance may operate on.

    Frozen so it can't be reassigned after construction.
    """

    workspace_gid: str
    project_gid: str


@dataclass(frozen=True)
class AccessMode:
    """Mode flags consulted by the PolicyGate."""

    read_only: bool = False
    project_restricted: bool = True


class Settings(BaseSettings):
    """
    Server configuration with environment variable bindings.

    Each field maps to an environment variable with the ASANA_ prefix, e.g.
    `project_gid` reads from ASANA_PROJECT_GID. `read_only_mode` also accepts
    the bare READ_ONLY_MODE variable.
    """

    # --- Asana credentials and scope ---

    # Personal access token (or OAuth token) used for every Asana call.
    access_token: str = ""

    # The only project and workspace this server may expose.
    project_gid: str = ""
    workspace_gid: str = ""

    read_only_mode: bool = Field(
        default=False,
        validation_alias=AliasChoices("ASANA_READ_ONLY_MODE", "READ_ONLY_MODE", "read_only_mode"),
    )

    api_base_url: str = ASANA_API_BASE_URL
    timeout_seconds: float = 30.0

    # --- Server settings ---

    # stdio for local MCP clients, streamable-http when deployed as a service.
    transport: Literal["stdio", "streamable-http"] = "stdio"
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "info"

    # --- Caller authentication (streamable-http only) ---

    # When unset, tools/list and tools/call are not authenticated.
    jwt_secret_key: str | None = None
    jwt_algorithm: str = "HS256"

    model_config = {
        "env_prefix": "ASANA_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "populate_by_name": True,
        "extra": "ignore",
    }

    def validate_required(self) -> None:
        missing = [
            f"ASANA_{name.upper()}"
            for name in ("access_token", "project_gid", "workspace_gid")
            if not getattr(self, name).strip()
        ]
        if missing:
            raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")

    def allowed_scope(self) -> AllowedScope:
        self.validate_required()
        return AllowedScope(
            workspace_gid=self.workspace_gid.strip(),
            project_gid=self.project_gid.strip(),
        )

    def access_mode(self) -> AccessMode:
        # Restricted mode follows the presence of a configured project.
        return AccessMode(
            read_only=self.read_only_mode,
            project_restricted=bool(self.project_gid.strip()),
        )
