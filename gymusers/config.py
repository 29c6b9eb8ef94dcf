"""Configuration for users-store clients."""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from .persistence import DEFAULT_STORAGE_KEY
from .triggers import DEFAULT_POLL_INTERVAL, RevalidationStrategy

STORAGE_BACKENDS = ("file", "async-file")

_ENV_FIELDS: Dict[str, str] = {
    "GYMUSERS_API_URL": "api_base_url",
    "GYMUSERS_STORAGE_PATH": "storage_path",
    "GYMUSERS_STORAGE_KEY": "storage_key",
    "GYMUSERS_STORAGE_BACKEND": "storage_backend",
    "GYMUSERS_REVALIDATION": "revalidation",
    "GYMUSERS_POLL_INTERVAL": "poll_interval",
    "GYMUSERS_HEALTH_INTERVAL": "health_interval",
    "GYMUSERS_REQUEST_TIMEOUT": "request_timeout",
}


DATA_DIR = Path(__file__).resolve().parent.parent / "data"

_DEFAULT_STORAGE_NAMES: Dict[str, str] = {
    "file": "local-storage.json",
    "async-file": "device-storage",
}


def default_storage_path(storage_backend: str) -> Path:
    """Return the default location for ``storage_backend``; each backend gets its own."""

    return (DATA_DIR / _DEFAULT_STORAGE_NAMES[storage_backend]).resolve(strict=False)


def _resolve_path(raw: object, base_path: Path | None) -> Path:
    candidate = Path(str(raw)).expanduser()
    if not candidate.is_absolute() and base_path is not None:
        candidate = base_path / candidate
    return candidate.resolve(strict=False)


def _optional_float(value: object, name: str) -> Optional[float]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a number") from exc
    if number <= 0:
        raise ValueError(f"{name} must be positive")
    return number


@dataclass(frozen=True)
class Settings:
    """Where a client keeps its users and how it stays in sync.

    With ``api_base_url`` set the store is remote-authoritative and revalidates
    according to ``revalidation``; otherwise it is local-authoritative and
    persists to ``storage_path``.
    """

    api_base_url: Optional[str] = None
    storage_path: Optional[Path] = None
    storage_key: str = DEFAULT_STORAGE_KEY
    storage_backend: str = "file"
    revalidation: RevalidationStrategy = RevalidationStrategy.EVENTS
    poll_interval: float = DEFAULT_POLL_INTERVAL
    health_interval: Optional[float] = None
    request_timeout: float = 10.0

    def __post_init__(self) -> None:
        if self.storage_backend not in STORAGE_BACKENDS:
            raise ValueError(f"storage_backend must be one of: {', '.join(STORAGE_BACKENDS)}")
        if self.storage_path is None:
            object.__setattr__(self, "storage_path", default_storage_path(self.storage_backend))

    @property
    def is_remote(self) -> bool:
        return bool(self.api_base_url)

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "Settings":
        """Create :class:`Settings` from raw dictionary data."""

        unknown = set(data.keys()) - set(Settings.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown configuration fields: {', '.join(sorted(unknown))}")

        defaults = Settings()
        api_base_url = str(data.get("api_base_url") or "").strip().rstrip("/") or None
        storage_backend = str(data.get("storage_backend", defaults.storage_backend)).strip().lower()
        if storage_backend not in STORAGE_BACKENDS:
            raise ValueError(
                f"storage_backend must be one of: {', '.join(STORAGE_BACKENDS)}"
            )
        try:
            revalidation = RevalidationStrategy(
                str(data.get("revalidation", defaults.revalidation.value)).strip().lower()
            )
        except ValueError as exc:
            choices = ", ".join(strategy.value for strategy in RevalidationStrategy)
            raise ValueError(f"revalidation must be one of: {choices}") from exc

        storage_key = str(data.get("storage_key", defaults.storage_key)).strip()
        if not storage_key:
            raise ValueError("storage_key must not be empty")

        return Settings(
            api_base_url=api_base_url,
            storage_path=(
                _resolve_path(data["storage_path"], base_path) if data.get("storage_path") else None
            ),
            storage_key=storage_key,
            storage_backend=storage_backend,
            revalidation=revalidation,
            poll_interval=_optional_float(data.get("poll_interval"), "poll_interval")
            or defaults.poll_interval,
            health_interval=_optional_float(data.get("health_interval"), "health_interval"),
            request_timeout=_optional_float(data.get("request_timeout"), "request_timeout")
            or defaults.request_timeout,
        )


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the client configuration file."""
    if env_value:
        candidate = Path(env_value).expanduser().resolve(strict=False)
    else:
        candidate = (Path(__file__).resolve().parent.parent / "config" / "client.yaml").resolve(strict=False)
    return candidate


def load_settings(
    config_path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from YAML (when present) and apply ``GYMUSERS_*`` overrides."""

    env = os.environ if environ is None else environ
    path = config_path or resolve_config_path(env.get("GYMUSERS_CONFIG"))

    raw: Dict[str, object] = {}
    base_path: Path | None = None
    if path.exists():
        with path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")
        raw.update(loaded)
        base_path = path.parent

    for env_name, field_name in _ENV_FIELDS.items():
        value = env.get(env_name)
        if value is not None and value.strip():
            raw[field_name] = value.strip()
            if field_name == "storage_path":
                raw[field_name] = str(Path(value.strip()).expanduser().resolve(strict=False))

    return Settings.from_dict(raw, base_path=base_path)


def with_api_url(settings: Settings, api_base_url: Optional[str]) -> Settings:
    """Return ``settings`` pointed at ``api_base_url`` when one is given."""

    if not api_base_url:
        return settings
    return replace(settings, api_base_url=api_base_url.strip().rstrip("/"))


__all__ = [
    "STORAGE_BACKENDS",
    "Settings",
    "default_storage_path",
    "load_settings",
    "resolve_config_path",
    "with_api_url",
]
