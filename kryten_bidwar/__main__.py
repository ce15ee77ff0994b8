"""CLI entry point for kryten-bidwar."""
import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from .main import BidwarApp

# Searched in order when --config is not given.
CONFIG_SEARCH_PATHS = (
    "/etc/kryten/kryten-bidwar/config.yaml",
    "./config.yaml",
)

# Third-party loggers that are chatty at INFO.
_QUIET_LOGGERS = ("gspread", "urllib3", "google.auth")


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if level.upper() != "DEBUG":
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kryten-bidwar",
        description="Attribute stream donations to bid war options and report standings in chat.",
    )
    parser.add_argument("--config", type=str, help="Path to config.yaml")
    parser.add_argument("--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument(
        "--validate-config",
        action="store_true",
        help="Load the config and bid war catalog, print a summary, and exit",
    )
    return parser


def find_config(explicit: str | None, search_paths=CONFIG_SEARCH_PATHS) -> str | None:
    """Return the config path to use, or None if nothing was found."""
    if explicit:
        return explicit
    for candidate in search_paths:
        if Path(candidate).exists():
            return candidate
    return None


def validate_config(config_path: str, logger: logging.Logger) -> int:
    """Check the config file and its bid wars. Returns a process exit code."""
    from .catalog import Catalog
    from .config import load_config

    try:
        cfg = load_config(config_path)
        catalog = Catalog.from_dict(cfg.bidwars.model_dump(mode="json"))
    except Exception as e:
        logger.error("Config validation failed: %s", e)
        return 1

    for contest in catalog.contests:
        state = "closed" if contest.closed else contest.summary_style.value
        logger.info(
            "  %s [%s]: %s",
            contest.name, state, ", ".join(o.short_code for o in contest.options) or "(no options)",
        )
    logger.info(
        "Config is valid: %d contest(s), %d open option(s), streamlabs %s.",
        len(catalog.contests),
        len(catalog.all_open_options()),
        "enabled" if cfg.streamlabs.enabled else "disabled",
    )
    return 0


async def main_async(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    logger = logging.getLogger("bidwar")

    config_path = find_config(args.config)
    if not config_path:
        logger.error(
            "No config file found. Use --config or create one of: %s",
            ", ".join(CONFIG_SEARCH_PATHS),
        )
        return 1

    if args.validate_config:
        return validate_config(config_path, logger)

    app = BidwarApp(config_path)

    # Signal handling (Unix only; Windows uses KeyboardInterrupt)
    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(app.stop()))

    try:
        await app.start()
    except KeyboardInterrupt:
        pass
    finally:
        await app.stop()
    return 0


def main() -> None:
    """Sync entry point for pyproject.toml [project.scripts]."""
    sys.exit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()
