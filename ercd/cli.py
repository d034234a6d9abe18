from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace
from pathlib import Path

import RNS

from .config import ConfigManager, HubRuntimeConfig
from .logging_config import configure_logging
from .paths import default_config_path, default_identity_path, ensure_private_dir
from .service import HubService


def default_config_text(identity_path: str) -> str:
    return f"""# ercd configuration (TOML)
#
# This file was created on first run.
# Edit it, then start ercd again.

[hub]

# Optional: Reticulum configuration directory.
# If left unset, Reticulum will choose its default (usually ~/.reticulum).
configdir = ""

# Where ercd stores its persistent identity (Reticulum Identity file).
identity_path = {identity_path!r}

# Destination name to host the hub on.
dest_name = "erc.hub"

# Announcing (Reticulum destination announces)
#
# announce_on_start: send a single announce right after startup.
# announce_period_s: if >0, periodically re-announce.
announce_on_start = true
announce_period_s = 0.0

# Hub identity fields. The greeting is included in every ADMITTED reply.
hub_name = "erc"
greeting = ""

# Room policy.
#
# room_capacity: maximum members per room. 2 gives 1:1 rooms; 0 is unbounded.
room_capacity = 2

# Per-sender throttles. Text and file sends are counted separately.
text_rate_limit = 8
text_rate_window_s = 10.0
file_rate_limit = 5
file_rate_window_s = 15.0

# How often expired throttle entries are swept from idle rooms.
send_log_prune_interval_s = 30.0

# Hub-initiated liveness checks (0 disables). A link that does not answer a
# PING within ping_timeout_s is torn down and its member leaves the room.
ping_interval_s = 20.0
ping_timeout_s = 25.0

# Largest inbound RNS.Resource accepted (file envelopes travel as resources).
max_resource_bytes = 8000000

# Log a stats report every N seconds (0 disables).
stats_interval_s = 0.0

[logging]

# Log level for ercd itself.
level = "INFO"

# Log level for Reticulum/RNS Python logging (if used by your install).
rns_level = "WARNING"

# Log to stderr (systemd/journald friendly).
console = true

# Optional file path for logs (leave empty to disable).
file = ""

# Log format and optional date format.
format = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
datefmt = ""
"""


def _ensure_first_run_files(config_path: str, identity_path: str) -> bool:
    created_any = False

    if not os.path.exists(config_path):
        cfg_dir = os.path.dirname(config_path)
        if cfg_dir:
            ensure_private_dir(Path(cfg_dir))
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(default_config_text(identity_path))
        created_any = True

    if not os.path.exists(identity_path):
        storage_dir = os.path.dirname(identity_path)
        if storage_dir:
            ensure_private_dir(Path(storage_dir))
        ident = RNS.Identity()
        ident.to_file(identity_path)
        try:
            os.chmod(identity_path, 0o600)
        except OSError:
            pass
        created_any = True

    return created_any


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ercd", description="Run an ephemeral relay chat hub")

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument("--configdir", default=None, help="Reticulum config directory")
    p.add_argument(
        "--identity",
        default=str(default_identity_path()),
        help="Path to hub identity file (created on first run)",
    )
    p.add_argument(
        "--dest-name", default=None, help="Destination app name (default: erc.hub)"
    )

    p.add_argument(
        "--no-announce",
        action="store_true",
        help="Disable announce on start (does not affect periodic announce)",
    )
    p.add_argument(
        "--announce-period",
        type=float,
        default=None,
        help="Periodic announce interval seconds (0 disables)",
    )

    p.add_argument("--hub-name", default=None, help="Hub name in ADMITTED")
    p.add_argument("--greeting", default=None, help="Greeting included in ADMITTED")

    p.add_argument(
        "--room-capacity",
        type=int,
        default=None,
        help="Maximum members per room (0 = unbounded)",
    )
    p.add_argument("--text-rate-limit", type=int, default=None, help="Text sends per window")
    p.add_argument(
        "--text-rate-window", type=float, default=None, help="Text throttle window seconds"
    )
    p.add_argument("--file-rate-limit", type=int, default=None, help="File sends per window")
    p.add_argument(
        "--file-rate-window", type=float, default=None, help="File throttle window seconds"
    )

    p.add_argument(
        "--ping-interval",
        type=float,
        default=None,
        help="Hub-initiated PING interval seconds (0 disables)",
    )
    p.add_argument(
        "--ping-timeout",
        type=float,
        default=None,
        help="Close link if PONG not received within this many seconds (0 disables)",
    )
    p.add_argument(
        "--stats-interval",
        type=float,
        default=None,
        help="Log a stats report every N seconds (0 disables)",
    )

    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def apply_cli_overrides(cfg: HubRuntimeConfig, args: argparse.Namespace) -> HubRuntimeConfig:
    if args.configdir is not None:
        cfg = replace(cfg, configdir=args.configdir)
    if args.dest_name is not None:
        cfg = replace(cfg, dest_name=args.dest_name)

    if args.no_announce:
        cfg = replace(cfg, announce_on_start=False)
    if args.announce_period is not None:
        cfg = replace(cfg, announce_period_s=float(args.announce_period))

    if args.hub_name is not None:
        cfg = replace(cfg, hub_name=args.hub_name)
    if args.greeting is not None:
        cfg = replace(cfg, greeting=args.greeting or None)

    if args.room_capacity is not None:
        cfg = replace(cfg, room_capacity=max(0, int(args.room_capacity)))
    if args.text_rate_limit is not None:
        cfg = replace(cfg, text_rate_limit=int(args.text_rate_limit))
    if args.text_rate_window is not None:
        cfg = replace(cfg, text_rate_window_s=float(args.text_rate_window))
    if args.file_rate_limit is not None:
        cfg = replace(cfg, file_rate_limit=int(args.file_rate_limit))
    if args.file_rate_window is not None:
        cfg = replace(cfg, file_rate_window_s=float(args.file_rate_window))

    if args.ping_interval is not None:
        cfg = replace(cfg, ping_interval_s=float(args.ping_interval))
    if args.ping_timeout is not None:
        cfg = replace(cfg, ping_timeout_s=float(args.ping_timeout))
    if args.stats_interval is not None:
        cfg = replace(cfg, stats_interval_s=float(args.stats_interval))

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    config_path = str(args.config)
    identity_path = str(args.identity)

    if _ensure_first_run_files(config_path, identity_path):
        print(
            "Created default ercd files. Edit the configuration before starting:\n"
            f"- Config:   {config_path}\n"
            f"- Identity: {identity_path}\n"
            "\nThen re-run ercd.",
            file=sys.stderr,
        )
        raise SystemExit(0)

    cfg = HubRuntimeConfig(config_path=config_path, identity_path=identity_path)
    cfg = ConfigManager().load(cfg, config_path)
    cfg = apply_cli_overrides(cfg, args)

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    svc = HubService(cfg)
    svc.start()
    svc.run_forever()


if __name__ == "__main__":
    main()
