from __future__ import annotations

import os
from pathlib import Path


def default_ercd_dir() -> Path:
    override = os.environ.get("ERCD_HOME")
    if override:
        return Path(override)
    return Path.home() / ".ercd"


def default_config_path() -> Path:
    return default_ercd_dir() / "ercd.toml"


def default_identity_path() -> Path:
    return default_ercd_dir() / "hub_identity"


def ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    try:
        # Best-effort tightening; may fail on some filesystems.
        os.chmod(path, 0o700)
    except OSError:
        pass
