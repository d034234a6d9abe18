from __future__ import annotations

import logging
import tomllib
from dataclasses import asdict, dataclass, replace
from typing import Any


@dataclass(frozen=True)
class HubRuntimeConfig:
    config_path: str | None = None
    configdir: str | None = None
    identity_path: str | None = None
    dest_name: str = "erc.hub"
    announce_on_start: bool = True
    announce_period_s: float = 0.0
    hub_name: str = "erc"
    greeting: str | None = None
    room_capacity: int = 2  # 0 = unbounded
    text_rate_limit: int = 8
    text_rate_window_s: float = 10.0
    file_rate_limit: int = 5
    file_rate_window_s: float = 15.0
    send_log_prune_interval_s: float = 30.0
    ping_interval_s: float = 20.0
    ping_timeout_s: float = 25.0
    max_resource_bytes: int = 8_000_000
    stats_interval_s: float = 0.0
    log_level: str = "INFO"
    log_rns_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


# Keys in the [logging] table and the config fields they map to.
_LOGGING_KEYS = {
    "level": "log_level",
    "rns_level": "log_rns_level",
    "console": "log_console",
    "file": "log_file",
    "format": "log_format",
    "datefmt": "log_datefmt",
}

# Optional string fields where an empty value in TOML means "unset".
_EMPTY_IS_NONE = ("configdir", "greeting", "log_file", "log_datefmt")


class ConfigManager:
    """Loads TOML configuration and merges it into a HubRuntimeConfig."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self.log = log or logging.getLogger("ercd.config")

    def load_toml(self, path: str) -> dict:
        with open(path, "rb") as f:
            return tomllib.load(f)

    def apply_config_data(self, cfg: HubRuntimeConfig, data: Any) -> HubRuntimeConfig:
        if not isinstance(data, dict):
            return cfg

        hub = data.get("hub")
        if isinstance(hub, dict):
            data = {**data, **hub}

        log_table = data.get("logging")
        if isinstance(log_table, dict):
            mapped = {
                field_name: log_table.get(key)
                for key, field_name in _LOGGING_KEYS.items()
                if key in log_table
            }
            data = {**data, **mapped}

        allowed = set(asdict(cfg).keys())
        # This identifies where the file came from; do not let the file override it.
        allowed.discard("config_path")
        updates = {k: v for k, v in data.items() if k in allowed}

        if "announce" in data and "announce_on_start" not in updates:
            updates["announce_on_start"] = bool(data["announce"])

        for key in _EMPTY_IS_NONE:
            if key in updates and updates[key] == "":
                updates[key] = None

        ignored = sorted(
            k for k in data.keys() if k not in allowed and k not in ("hub", "logging", "announce")
        )
        if ignored:
            self.log.warning("Ignoring unknown config keys: %s", ", ".join(ignored))

        return replace(cfg, **updates) if updates else cfg

    def load(self, cfg: HubRuntimeConfig, path: str) -> HubRuntimeConfig:
        return self.apply_config_data(cfg, self.load_toml(path))
