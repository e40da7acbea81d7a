"""
Runner configuration.

The configuration is a JSON document naming the capability tags a column must
support and the implementations under test:

    {
      "tags": ["eddsa-rdfc-2022"],
      "implementations": [
        {
          "name": "Example",
          "issuers": [{"id": "did:key:z6Mk...", "endpoint": "https://...",
                       "tags": ["eddsa-rdfc-2022"], "options": {}}],
          "verifiers": [{"endpoint": "https://...", "tags": ["eddsa-rdfc-2022"]}]
        }
      ]
    }
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from di_conformance.endpoints import Implementation, ImplementationRegistry

CONFIG_ENV = "DI_CONFORMANCE_CONFIG"
ISSUER_NAME_JCS_ENV = "ISSUER_NAME_JCS"
DEFAULT_ISSUER_NAME_JCS = "Grotto Networking"
DEFAULT_CONFIG_PATH = "config/runner.json"


class ConfigError(Exception):
    """Raised when the runner configuration is missing or invalid."""


@dataclass
class RunnerConfig:
    """Parsed runner configuration."""

    tags: list[str] = field(default_factory=list)
    implementations: list[dict[str, Any]] = field(default_factory=list)
    issuer_name_jcs: str = DEFAULT_ISSUER_NAME_JCS

    def registry(
        self, timeout: float = 30.0, verify_ssl: bool = True
    ) -> ImplementationRegistry:
        """Build the implementation registry, keeping configuration order."""
        try:
            return ImplementationRegistry(
                Implementation.from_dict(entry, timeout=timeout, verify_ssl=verify_ssl)
                for entry in self.implementations
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"Invalid implementation entry: {e}") from e


def issuer_name_jcs() -> str:
    """Name of the issuer used to produce eddsa-jcs-2022 verifier fixtures."""
    return os.getenv(ISSUER_NAME_JCS_ENV) or DEFAULT_ISSUER_NAME_JCS


def default_config_path() -> Path:
    return Path(os.getenv(CONFIG_ENV, DEFAULT_CONFIG_PATH))


def parse_config(data: Any) -> RunnerConfig:
    """Validate a loaded configuration document.

    Raises:
        ConfigError: If the document does not have the expected shape.
    """
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a JSON object")

    tags = data.get("tags", [])
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise ConfigError('"tags" must be a list of strings')

    implementations = data.get("implementations", [])
    if not isinstance(implementations, list):
        raise ConfigError('"implementations" must be a list')
    for entry in implementations:
        if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
            raise ConfigError("Every implementation needs a string \"name\"")
        for role in ("issuers", "verifiers"):
            for endpoint in entry.get(role, []) or []:
                if not isinstance(endpoint, dict) or "endpoint" not in endpoint:
                    raise ConfigError(
                        f'{entry["name"]}: every entry in "{role}" needs an "endpoint"'
                    )

    return RunnerConfig(
        tags=list(tags),
        implementations=implementations,
        issuer_name_jcs=issuer_name_jcs(),
    )


def load_config(path: str | Path | None = None) -> RunnerConfig:
    """Load the runner configuration from ``path``.

    Defaults to ``$DI_CONFORMANCE_CONFIG`` or ``config/runner.json``.

    Raises:
        ConfigError: If the file is missing, not JSON or invalid.
    """
    path = Path(path) if path is not None else default_config_path()
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with path.open() as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e

    return parse_config(data)
