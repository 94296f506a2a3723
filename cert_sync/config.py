from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "cert-sync.json"
DEFAULT_API_URL = "https://api.openai.com/v1/chat/completions"

ENV_OVERRIDES = {
    "CERT_SYNC_MATCH_THRESHOLD": ("match_threshold", float),
    "CERT_SYNC_MODEL": ("model", str),
    "CERT_SYNC_API_URL": ("api_url", str),
    "CERT_SYNC_TIMEOUT": ("request_timeout", float),
    "CERT_SYNC_MAX_TOKENS": ("max_tokens", int),
    "OPENAI_API_KEY": ("api_key", str),
}


@dataclass
class Settings:
    match_threshold: float = 0.75
    data_sheet_names: tuple[str, ...] = ("Certs 2025",)
    update_log_sheet: str = "Update Log"
    update_log_scan_limit: int = 100_000
    api_url: str = DEFAULT_API_URL
    model: str = "gpt-4o"
    request_timeout: float = 120.0
    max_tokens: int = 1000
    api_key: str | None = field(default=None, repr=False)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["data_sheet_names"] = list(self.data_sheet_names)
        payload.pop("api_key")
        return payload


def _coerce(name: str, value: Any) -> Any:
    if name == "data_sheet_names":
        if isinstance(value, str):
            return (value,)
        return tuple(str(item) for item in value)
    if name == "match_threshold":
        threshold = float(value)
        if not 0.0 < threshold <= 1.0:
            raise ValueError(f"match_threshold must be in (0, 1], got {value!r}")
        return threshold
    if name in {"update_log_scan_limit", "max_tokens"}:
        return int(value)
    if name == "request_timeout":
        return float(value)
    return value


def load_settings(path: Path | str | None = None, *, environ: dict[str, str] | None = None) -> Settings:
    environ = os.environ if environ is None else environ
    settings = Settings()
    known = {item.name for item in fields(Settings)}

    config_path = Path(path) if path else Path.cwd() / DEFAULT_CONFIG_NAME
    if config_path.exists():
        try:
            payload = json.loads(config_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Could not read config {config_path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise ValueError(f"Config {config_path} must be a JSON object.")
        for key, value in payload.items():
            if key == "api_key":
                logger.warning("Ignoring api_key in %s; set OPENAI_API_KEY instead", config_path)
                continue
            if key not in known:
                logger.warning("Ignoring unknown config key %r in %s", key, config_path)
                continue
            setattr(settings, key, _coerce(key, value))
        logger.debug("Loaded settings from %s", config_path)
    elif path:
        raise FileNotFoundError(f"Config file not found: {config_path}")

    for env_name, (attr, cast) in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw:
            setattr(settings, attr, _coerce(attr, cast(raw)))
    return settings


def starter_config() -> str:
    return json.dumps(Settings().to_dict(), indent=2) + "\n"
