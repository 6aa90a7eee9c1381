"""
Process entry: config, metrics, alerts, then the reconciliation loop until a signal.

    python -m ladderbot.main
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys

from ladderbot.config.config import QuoteConfig
from ladderbot.config.config_validator import validate_and_log
from ladderbot.core.errors import ConfigError, NoLiquidity
from ladderbot.infra.logging_cfg import build_logger, log_event
from ladderbot.monitoring.alerting import alert_manager_from_config
from ladderbot.monitoring.metrics import QuoteMetrics, start_metrics_server
from ladderbot.orchestrator.reconciliation_loop import run_reconciliation

log = build_logger(
    "ladderbot",
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    file_path=os.getenv("LOG_FILE") or None,
)


async def main() -> int:
    try:
        cfg = QuoteConfig.load()
    except ConfigError as exc:
        log.error(f"Configuration error: {exc}")
        return 2

    if not validate_and_log(cfg, log):
        log.error("refusing to start with an invalid configuration")
        return 1

    metrics = QuoteMetrics(symbol=cfg.symbol)
    if start_metrics_server(cfg.metrics_port, metrics):
        log_event(log, "metrics_server_started", port=cfg.metrics_port)

    alert_manager = alert_manager_from_config(cfg)
    log_event(log, "startup", exchange=cfg.exchange, symbol=cfg.symbol, mode=cfg.mode.value)

    run_task = asyncio.create_task(run_reconciliation(cfg, metrics=metrics, alerts=alert_manager))

    def request_stop() -> None:
        # Cancelling the run task makes the loop cancel its resting orders
        if not run_task.done():
            run_task.cancel()

    loop = asyncio.get_running_loop()
    # No add_signal_handler on Windows; Ctrl+C arrives as KeyboardInterrupt there
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_stop)
        except NotImplementedError:
            pass

    exit_code = 0
    try:
        await run_task
    except asyncio.CancelledError:
        log.info("Shutdown signal received, orders cancelled")
    except (ConfigError, NoLiquidity) as exc:
        log.error(f"Startup failed: {exc}")
        exit_code = 2
    finally:
        await alert_manager.close()
        log_event(log, "process_exit", code=exit_code)
    return exit_code


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\ninterrupted")
        sys.exit(0)
