from __future__ import annotations

import argparse
import os
from pathlib import Path

from dotenv import load_dotenv

from .cli import run_cli
from .config import ConfigError, load_config
from .logging_config import configure_logging
from .store import StoreError, open_store


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="DeliveryDesk admin CLI.")
    parser.add_argument("--config", help="Path to config.toml (default: $DELIVERYDESK_CONFIG or ./config.toml)")
    args = parser.parse_args(argv)

    load_dotenv()
    path = args.config or os.getenv("DELIVERYDESK_CONFIG")
    if path is None and Path("config.toml").exists():
        path = "config.toml"

    try:
        cfg = load_config(path)
        configure_logging(cfg.log_level)
        run_cli(open_store(cfg.storage, cfg.db))
        return 0
    except ConfigError as e:
        print(f"[CONFIG ERROR] {e}")
        return 2
    except StoreError as e:
        print(f"[STORE ERROR] {e}")
        return 3
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
