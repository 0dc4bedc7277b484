#!/usr/bin/env python3
"""jukegame - entry point

Subcommands:
    serve   run the HTTP API (round stages and maintenance tick)
    tick    run one maintenance tick, or ticks on a cron schedule
"""

import argparse
import json
import logging
import sys

from jukegame.config import get_data_dir, load_config_from_env, validate_config
from jukegame.monitoring.metrics import setup_metrics
from jukegame.scheduler.cron import run_with_schedule
from jukegame.services import build_services
from jukegame.utils.logging_config import setup_logging
from jukegame.web.health import write_health_status

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jukegame",
        description="Round pipeline and cache maintenance for the shared-jukebox artist game",
        epilog="Configure via environment variables"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--port", type=int, help="Override WEB_PORT")

    tick = subparsers.add_parser("tick", help="Run a maintenance tick")
    tick.add_argument("--token", help="Catalog token (defaults to SPOTIFY_SERVICE_TOKEN)")
    tick.add_argument("--schedule", help="Cron expression; repeat ticks on this schedule")

    return parser


def run_tick(services, data_dir, token=None) -> dict:
    result = services.scheduler.tick(token=token)
    write_health_status(data_dir, "healthy", f"Tick processed {result['processed']} items")
    print(json.dumps(result))
    return result


def main(argv=None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    config = validate_config(load_config_from_env())
    if config is None:
        logging.basicConfig(level="ERROR")
        logger.error("❌ Invalid configuration; see the errors above")
        return 1

    setup_logging(config.logging.level, config.logging.format, config.logging.file)

    if config.monitoring.metrics_enabled:
        setup_metrics(enabled=True, port=config.monitoring.metrics_port)

    data_dir = get_data_dir()
    services = build_services(config, data_dir)

    try:
        if args.command == "serve":
            from jukegame.web.app import start_web_server
            write_health_status(data_dir, "running", "Serving API")
            start_web_server(services, host=config.web.host,
                             port=args.port or config.web.port, threaded=False)
            return 0

        schedule = args.schedule or config.maintenance.schedule
        if schedule:
            write_health_status(data_dir, "scheduled", f"Ticking on {schedule}")
            run_with_schedule(run_tick, schedule, services=services,
                              data_dir=data_dir, token=args.token)
        else:
            run_tick(services, data_dir, token=args.token)
        return 0
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    finally:
        services.shutdown()


if __name__ == "__main__":
    sys.exit(main())
