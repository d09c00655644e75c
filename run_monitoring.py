#!/usr/bin/env python3
"""
Registry Monitoring CLI for EthicCheck

Usage:
    python run_monitoring.py [full|quick|metrics|help] [--config PATH] [--json] [--verbose]

Commands:
    full       Run the complete audit and emit a report (default)
    quick      Run the health check only
    metrics    Print the numeric summary
    help       Show this help message

Exit codes:
    0 - Success, no critical issues
    1 - Error or critical issues detected
"""

import sys
import json
import argparse
import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from config_manager import ConfigManager, ConfigurationError, setup_logging
from registry.connection import DatabaseSettings, init_db, close_db
from registry.health_monitor import RegistryMonitor
from registry.monitoring import configure_monitoring
from registry.repositories import StorageError

logger = logging.getLogger(__name__)

COMMANDS = ('full', 'quick', 'metrics', 'help')

METRIC_LABELS = (
    ('total_companies', 'Total Companies'),
    ('companies_with_ticker', 'Companies with Tickers'),
    ('ticker_coverage', 'Ticker Coverage'),
    ('potential_duplicates', 'Potential Duplicates'),
    ('validation_issues', 'Validation Issues'),
    ('critical_issues', 'Critical Issues'),
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="run_monitoring",
        description="Automated registry data quality monitoring",
        epilog="Exit codes: 0 = no critical issues, 1 = error or critical issues detected"
    )
    parser.add_argument("command", nargs="?", default="full", help=f"One of: {', '.join(COMMANDS)}")
    parser.add_argument("--config", "-c", default=None, help="Path to config.yaml")
    parser.add_argument("--json", action="store_true", help="Print machine-readable output")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    return parser


def print_metrics(metrics: dict) -> None:
    print("\nKey Metrics:")
    for key, label in METRIC_LABELS:
        value = metrics.get(key, 0)
        if key == 'ticker_coverage':
            print(f"- {label}: {value:.1f}%")
        else:
            print(f"- {label}: {value}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == 'help':
        parser.print_help()
        return 0

    if args.command not in COMMANDS:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        parser.print_usage(sys.stderr)
        return 1

    try:
        config = ConfigManager(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(config, verbose=args.verbose)
    configure_monitoring(
        slow_query_threshold_ms=config.monitoring.slow_query_ms,
        warning_threshold_ms=config.monitoring.slow_query_ms / 2,
        enable_prometheus=config.monitoring.publish_metrics
    )

    try:
        provider = init_db(DatabaseSettings.from_config(config), echo=config.database.echo)
        with provider.session_scope() as session:
            monitor = RegistryMonitor(session, config)

            if args.command == 'quick':
                logger.info("Running quick health check...")
                healthy, critical = monitor.quick_health_check()
                if args.json:
                    print(json.dumps({"healthy": healthy, "critical_issues": critical}))
                else:
                    print("\nQuick Health Check Results:")
                    print(f"Healthy: {'Yes' if healthy else 'No'}")
                    print(f"Critical Issues: {critical}")
                return 0 if healthy else 1

            report = monitor.run_monitoring()

            if args.command == 'metrics':
                if args.json:
                    print(json.dumps(report.metrics, indent=2))
                else:
                    print_metrics(report.metrics)
            else:
                monitor.send_report(report)
                if args.json:
                    print(json.dumps(report.to_dict(), indent=2))
                else:
                    print(f"\nOverall Health: {report.overall_health.value.upper()}")
                    for alert in report.alerts:
                        print(f"[{alert.level.value.upper()}] {alert.title}: {alert.message}")
                    if report.recommendations:
                        print("\nRecommendations:")
                        for recommendation in report.recommendations:
                            print(f"- {recommendation}")

            return 1 if report.critical_count > 0 else 0

    except (StorageError, SQLAlchemyError) as e:
        logger.error(f"Error running monitoring: {e}")
        return 1
    finally:
        close_db()


if __name__ == "__main__":
    sys.exit(main())
