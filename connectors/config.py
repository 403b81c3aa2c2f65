"""Per-connector credential configuration.

Credentials are read from environment variables, optionally seeded from a
``.env`` file. A missing required variable is a fail-fast ConfigError raised
before any network call; there is no partial or degraded mode.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from dotenv import load_dotenv

from connectors.errors import ConfigError


# connector id -> (required variables, optional variables)
CONNECTOR_ENV: Dict[str, Tuple[Tuple[str, ...], Tuple[str, ...]]] = {
    "zendesk": (("ZENDESK_SUBDOMAIN", "ZENDESK_EMAIL", "ZENDESK_TOKEN"), ()),
    "freshdesk": (("FRESHDESK_SUBDOMAIN", "FRESHDESK_API_KEY"), ()),
    "groove": (("GROOVE_API_TOKEN",), ()),
    "helpcrunch": (("HELPCRUNCH_API_KEY",), ()),
    "kayako-classic": (
        ("KAYAKO_CLASSIC_DOMAIN", "KAYAKO_CLASSIC_API_KEY", "KAYAKO_CLASSIC_SECRET_KEY"),
        ("KAYAKO_CLASSIC_DEPARTMENT_ID",),
    ),
}


@dataclass
class ConnectorConfig:
    """Resolved configuration for one connector.

    Attributes:
        connector_type: Registry id (e.g. "zendesk")
        credentials: Required variables, keyed by env var name
        settings: Optional variables that were present
    """
    connector_type: str
    credentials: Dict[str, str] = field(default_factory=dict)
    settings: Dict[str, str] = field(default_factory=dict)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        if name in self.credentials:
            return self.credentials[name]
        return self.settings.get(name, default)


def load_env_file(env_path: Optional[Path] = None) -> bool:
    """Load a .env file into the process environment if it exists."""
    env_path = env_path or Path.cwd() / ".env"
    if env_path.exists():
        return load_dotenv(env_path)
    return False


def required_variables(connector_type: str) -> List[str]:
    if connector_type not in CONNECTOR_ENV:
        raise ConfigError(
            f"Unknown connector: {connector_type}. Available: {sorted(CONNECTOR_ENV)}"
        )
    return list(CONNECTOR_ENV[connector_type][0])


def load_connector_config(
    connector_type: str,
    environ: Optional[Mapping[str, str]] = None,
) -> ConnectorConfig:
    """Resolve a connector's credentials from the environment.

    Args:
        connector_type: Registry id
        environ: Mapping to read instead of ``os.environ``

    Raises:
        ConfigError: If the connector is unknown or any required variable is missing
    """
    env = os.environ if environ is None else environ
    required = required_variables(connector_type)
    optional = CONNECTOR_ENV[connector_type][1]

    missing = [name for name in required if not (env.get(name) or "").strip()]
    if missing:
        raise ConfigError(
            f"Missing {', '.join(missing)} env var{'s' if len(missing) > 1 else ''} for {connector_type}",
            missing=missing,
        )

    return ConnectorConfig(
        connector_type=connector_type,
        credentials={name: env[name].strip() for name in required},
        settings={name: env[name].strip() for name in optional if (env.get(name) or "").strip()},
    )
