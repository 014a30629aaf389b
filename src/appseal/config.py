"""
Pipeline configuration.

All recognized options live on one frozen ``PipelineConfig``. It is built once at
the edge (CLI) from a TOML file, the environment and command-line overrides, and
handed to the orchestrator; nothing downstream reads ``os.environ``.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from appseal.constants import (
    DEFAULT_ARCHITECTURES,
    DEFAULT_CONFIG_NAMES,
    DEFAULT_INSTALL_DIR,
    DEFAULT_OUTPUT_DIR,
    ENV_IDENTITY,
    ENV_KEYCHAIN,
    ENV_NOTARY_ISSUER_ID,
    ENV_NOTARY_KEY,
    ENV_NOTARY_KEY_ID,
    ENV_TEAM_ID,
)
from appseal.errors import ConfigurationError
from appseal.models import NotaryCredentials

_PATH_FIELDS = {"keychain", "entitlements", "output_dir", "install_dir"}


@dataclass(frozen=True)
class PipelineConfig:
    identity: str | None = None
    expected_team_id: str | None = None
    keychain: Path | None = None
    notary: NotaryCredentials = field(default_factory=NotaryCredentials)
    architectures: tuple[str, ...] = DEFAULT_ARCHITECTURES
    release: bool = True
    local_only: bool = False
    open_result: bool = False
    install: bool = False
    bundle_name: str | None = None
    bundle_identifier: str | None = None
    entitlements: Path | None = None
    volume_name: str | None = None
    output_dir: Path = DEFAULT_OUTPUT_DIR
    install_dir: Path = DEFAULT_INSTALL_DIR

    @property
    def target_dir(self) -> str:
        return "release" if self.release else "debug"

    @property
    def distribution(self) -> bool:
        """Release builds headed for a disk image are held to the strict verification policy."""
        return self.release and not self.local_only

    def output_bundle_name(self, bundle: Path) -> str:
        name = self.bundle_name or bundle.name
        return name if name.endswith(".app") else f"{name}.app"

    def with_overrides(self, **overrides: Any) -> PipelineConfig:
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def find_config_file(start: Path) -> Path | None:
    for name in DEFAULT_CONFIG_NAMES:
        candidate = start / name
        if candidate.is_file():
            return candidate
    return None


def _read_table(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationError(f"Cannot read config {path}: {e}") from e
    if path.name == "pyproject.toml":
        return data.get("tool", {}).get("appseal", {})
    return data.get("appseal", data)


def _coerce(raw: Mapping[str, Any], base: Path) -> dict[str, Any]:
    known = {f.name for f in fields(PipelineConfig)}
    unknown = set(raw) - known
    if unknown:
        raise ConfigurationError(f"Unknown config keys: {', '.join(sorted(unknown))}")

    values: dict[str, Any] = {}
    for key, value in raw.items():
        if key in _PATH_FIELDS:
            p = Path(value).expanduser()
            values[key] = p if p.is_absolute() else base / p
        elif key == "architectures":
            values[key] = tuple(value)
        elif key == "notary":
            if not isinstance(value, Mapping):
                raise ConfigurationError(
                    f"notary must be a table with key, key_id and issuer_id, not {type(value).__name__}"
                )
            values[key] = NotaryCredentials(
                key=value.get("key"), key_id=value.get("key_id"), issuer_id=value.get("issuer_id")
            )
        else:
            values[key] = value
    return values


def _from_env(env: Mapping[str, str], current: NotaryCredentials) -> dict[str, Any]:
    values: dict[str, Any] = {}
    if env.get(ENV_IDENTITY):
        values["identity"] = env[ENV_IDENTITY]
    if env.get(ENV_TEAM_ID):
        values["expected_team_id"] = env[ENV_TEAM_ID]
    if env.get(ENV_KEYCHAIN):
        values["keychain"] = Path(env[ENV_KEYCHAIN]).expanduser()

    notary = NotaryCredentials(
        key=env.get(ENV_NOTARY_KEY) or current.key,
        key_id=env.get(ENV_NOTARY_KEY_ID) or current.key_id,
        issuer_id=env.get(ENV_NOTARY_ISSUER_ID) or current.issuer_id,
    )
    if notary != current:
        values["notary"] = notary
    return values


def load_config(
    path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
    cwd: Path | None = None,
    **overrides: Any,
) -> PipelineConfig:
    """Build the configuration. Precedence: overrides > environment > file > defaults."""
    cwd = cwd or Path.cwd()
    env = os.environ if env is None else env

    if path is not None and not Path(path).is_file():
        raise ConfigurationError(f"Config file not found: {path}")
    path = Path(path) if path else find_config_file(cwd)

    config = PipelineConfig()
    if path is not None:
        config = replace(config, **_coerce(_read_table(path), path.parent.resolve()))
    config = replace(config, **_from_env(env, config.notary))
    return config.with_overrides(**overrides)
