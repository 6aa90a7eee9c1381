#!/usr/bin/env python3
"""
Guarded launcher: runs preflight checks, shows where the bot will trade,
and asks for confirmation before handing over to ladderbot.main.

    python start_bot.py              # interactive
    python start_bot.py --no-confirm # systemd
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt
from rich.table import Table

from ladderbot.config.config import ExchangeCredentials, QuoteConfig, budgets_summary, env_bool
from ladderbot.config.config_validator import validate_config
from ladderbot.core.errors import ConfigError

console = Console()

ENV_TEMPLATE = """\
EXCHANGE=mexc
SYMBOL=ORBD/USDT
TOTAL_QUOTE_AMOUNT=100
MEXC_API_KEY=...
MEXC_SECRET=..."""


def preflight():
    """
    Yield (check, ok, detail) rows. Stops at the first failure since later
    checks depend on earlier ones.
    """
    env_file = Path(".env")
    if not env_file.exists():
        yield ".env", False, "not found; minimal example:\n" + ENV_TEMPLATE
        return
    load_dotenv(env_file)
    yield ".env", True, str(env_file.resolve())

    try:
        creds = ExchangeCredentials.from_env(os.getenv("EXCHANGE", ""))
    except ConfigError as exc:
        yield "credentials", False, str(exc)
        return
    yield "credentials", True, repr(creds)

    try:
        cfg = QuoteConfig.load(require_credentials=False)
    except ConfigError as exc:
        yield "config", False, str(exc)
        return
    result = validate_config(cfg)
    for issue in result.get_warnings():
        yield "config", True, f"warning: {issue.message}"
    if not result.valid:
        yield "config", False, "; ".join(i.message for i in result.get_errors())
        return
    yield "config", True, f"{cfg.exchange} {cfg.symbol} mode={cfg.mode.value} " + ", ".join(budgets_summary(cfg))

    log_file = os.getenv("LOG_FILE")
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    yield "log file", True, log_file or "console only"


def run_preflight() -> bool:
    table = Table(title="Preflight", show_lines=False)
    table.add_column("check")
    table.add_column("")
    table.add_column("detail", overflow="fold")
    passed = True
    for name, ok, detail in preflight():
        table.add_row(name, "[green]ok[/]" if ok else "[red]FAIL[/]", escape(detail))
        passed = passed and ok
    console.print(table)
    return passed


def announce_venue() -> None:
    venue = os.getenv("EXCHANGE", "?")
    if env_bool("TESTNET", False):
        console.print(f"[yellow]{venue} sandbox[/]")
    else:
        console.print(f"[bold red]{venue} MAINNET, real funds[/]")


def main() -> None:
    parser = argparse.ArgumentParser(description="Ladder quoting bot launcher")
    parser.add_argument("--no-confirm", action="store_true", help="skip the START prompt (systemd)")
    args = parser.parse_args()

    if not run_preflight():
        console.print("[red]Preflight failed, nothing started[/]")
        sys.exit(1)
    announce_venue()

    if not args.no_confirm and Prompt.ask("Type START to begin").strip().upper() != "START":
        console.print("cancelled")
        sys.exit(1)

    from ladderbot.main import main as bot_main

    try:
        code = asyncio.run(bot_main())
    except KeyboardInterrupt:
        console.print("\ninterrupted")
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
