"""MCP Environment Variable Resolver.

Resolves ``${VAR}`` placeholders in a service definition's environment and
headers from the following sources:
- File-based secrets (per service, from the MCP secrets YAML)
- OS environment variables

Keeping secrets out of the services document lets the same document be
committed while tokens live in a separate, untracked file.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import yaml

if TYPE_CHECKING:
    from mcp_bridge.domain.models import ServiceDefinition

logger = logging.getLogger(__name__)

# Default path for MCP service secrets
DEFAULT_MCP_SECRETS_PATH = "secrets/mcp-services.yaml"  # pragma: allowlist secret

_PLACEHOLDER = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_SECRET_HINTS = ("KEY", "TOKEN", "SECRET", "PASSWORD", "AUTHORIZATION")


@dataclass
class ResolutionResult:
    """Result of environment variable resolution.

    Attributes:
        environment: Subprocess environment with placeholders substituted
        headers: HTTP/WebSocket headers with placeholders substituted
        missing: Placeholder names that could not be resolved (left verbatim)
        warnings: Warning messages produced during resolution
    """

    environment: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    missing: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        """Check if every placeholder was resolved."""
        return len(self.missing) == 0


def _mask(name: str, value: str) -> str:
    if any(hint in name.upper() for hint in _SECRET_HINTS):
        return "***"
    return value[:20] + "..." if len(value) > 20 else value


class McpEnvironmentResolver:
    """Resolver for MCP service environment variables and headers.

    Placeholders are resolved in priority order:
    1. Service-specific secrets (from the secrets YAML)
    2. OS environment variables (fallback, if allowed)

    Secrets configured for a service are also added to its subprocess
    environment when the definition does not set them itself.

    Usage:
        resolver = McpEnvironmentResolver("secrets/mcp-services.yaml")
        result = resolver.resolve(definition)

        if not result.is_complete:
            logger.warning(f"Unresolved placeholders: {result.missing}")
    """

    def __init__(
        self,
        secrets_path: str | Path | None = None,
        allow_os_env: bool = True,
    ):
        """Initialize the environment resolver.

        Args:
            secrets_path: Path to the MCP secrets YAML file.
                         Defaults to secrets/mcp-services.yaml.
                         Can also be set via MCP_SECRETS_PATH env var.
            allow_os_env: Whether to fall back to OS environment variables.
        """
        self._secrets: dict[str, dict[str, str]] = {}
        self._allow_os_env = allow_os_env

        # Resolve path: explicit > env var > default
        if secrets_path:
            self._path = Path(secrets_path)
        elif os.environ.get("MCP_SECRETS_PATH"):
            self._path = Path(os.environ["MCP_SECRETS_PATH"])
        else:
            self._path = Path(DEFAULT_MCP_SECRETS_PATH)

        self._load_secrets()

    def _load_secrets(self) -> None:
        """Load secrets from YAML file.

        Expected format:
        ```yaml
        services:
          github:
            GITHUB_TOKEN: ghp-xxxx
          search:
            API_KEY: another-key
        ```
        """
        if not self._path.exists():
            logger.debug(f"MCP secrets file not found: {self._path}")
            return

        try:
            with open(self._path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"Failed to parse MCP secrets file {self._path}: {e}")
            return
        except OSError as e:
            logger.error(f"Failed to load MCP secrets file {self._path}: {e}")
            return

        if isinstance(data, dict) and isinstance(data.get("services"), dict):
            self._secrets = {str(key): {str(k): str(v) for k, v in (values or {}).items()} for key, values in data["services"].items()}
            logger.info(f"Loaded MCP secrets for {len(self._secrets)} service(s)")
        else:
            logger.debug(f"MCP secrets file {self._path} has no 'services' section")

    def resolve(self, definition: "ServiceDefinition") -> ResolutionResult:
        """Resolve placeholders in a definition's environment and headers.

        Unresolvable placeholders are left verbatim and reported in ``missing``.
        """
        result = ResolutionResult()
        service_secrets = self._secrets.get(definition.id, {})

        def lookup(match: re.Match[str]) -> str:
            var_name = match.group(1)
            if var_name in service_secrets:
                value, source = service_secrets[var_name], "secrets"
            elif self._allow_os_env and var_name in os.environ:
                value, source = os.environ[var_name], "os_env"
            else:
                if var_name not in result.missing:
                    result.missing.append(var_name)
                    result.warnings.append(f"Service {definition.id}: variable '{var_name}' is not set")
                return match.group(0)
            logger.debug(f"Resolved {var_name}={_mask(var_name, value)} (from {source})")
            return value

        for name, raw in definition.env.items():
            result.environment[name] = _PLACEHOLDER.sub(lookup, raw)
        for name, value in service_secrets.items():
            result.environment.setdefault(name, value)
        for name, raw in definition.headers.items():
            result.headers[name] = _PLACEHOLDER.sub(lookup, raw)

        return result

    def get_service_secrets(self, service_id: str) -> dict[str, str]:
        """Get secrets configured for a service, or an empty dict."""
        return dict(self._secrets.get(service_id, {}))

    def has_service_secrets(self, service_id: str) -> bool:
        return service_id in self._secrets

    @property
    def loaded_services(self) -> list[str]:
        """Get list of services that have secrets configured."""
        return list(self._secrets.keys())

    def reload(self) -> None:
        """Reload secrets from the file."""
        self._secrets.clear()
        self._load_secrets()
