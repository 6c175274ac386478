"""
Main application entry point
Runs the intercepting proxy with the passive scan pipeline behind it
"""

import argparse
import signal
import sys
import threading
from pathlib import Path

import structlog

from triage.analyzer import LLMAnalyzer
from triage.cli.console import (
    ScanReporter,
    console,
    prefilter_command,
    print_results,
    rules_stats_command,
)
from triage.core.config import ApplicationConfig
from triage.core.logging import configure_logging
from triage.interception import ProxyServer
from triage.scanner import FilterEngine, RuleStore
from triage.scanner.coordinator import ScanCoordinator

logger = structlog.get_logger()


def parse_arguments(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="Passive Traffic Triage",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                            Start the proxy and scan pipeline
  python main.py --port 8081 --workers 5    Custom proxy port and pool size
  python main.py --rules-stats              Show the signature rule set
  python main.py --prefilter dump.txt       Run the pre-filter over a saved pair
        """
    )

    parser.add_argument(
        "--rules-stats",
        action="store_true",
        help="Show rule and pattern counts per vulnerability type"
    )

    parser.add_argument(
        "--prefilter",
        metavar="FILE",
        type=Path,
        help="Run the signature pre-filter over a raw request/response file"
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=Path("config/default.yaml"),
        help="YAML configuration file (default: config/default.yaml)"
    )

    # Pipeline Options
    parser.add_argument(
        "--workers",
        type=int,
        help="Consumer worker threads, 1-10 (default: 3)"
    )

    parser.add_argument(
        "--filter-workers",
        type=int,
        help="Pre-filter worker threads, kept below --workers (default: 2)"
    )

    parser.add_argument(
        "--no-prefilter",
        action="store_true",
        help="Disable the signature pre-filter"
    )

    # Proxy Options
    parser.add_argument(
        "--host",
        help="Host to bind the proxy (default: 127.0.0.1)"
    )

    parser.add_argument(
        "--port",
        type=int,
        help="Port to bind the proxy (default: 8080)"
    )

    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: from config, INFO)"
    )

    return parser.parse_args(argv)


def build_config(args) -> ApplicationConfig:
    """Apply command line overrides on top of YAML and environment settings"""
    scan = {}
    if args.workers is not None:
        scan["consumer_workers"] = args.workers
    if args.filter_workers is not None:
        scan["filter_workers"] = args.filter_workers
    if args.no_prefilter:
        scan["prefilter_enabled"] = False

    proxy = {}
    if args.host:
        proxy["proxy_host"] = args.host
    if args.port:
        proxy["proxy_port"] = args.port

    logging_overrides = {"level": args.log_level} if args.log_level else {}

    return ApplicationConfig(args.config, scan=scan, proxy=proxy, logging=logging_overrides)


def build_rule_store(config: ApplicationConfig) -> RuleStore:
    if config.scan.rules_file:
        return RuleStore.from_yaml(config.scan.rules_file)
    return RuleStore.default()


def run_pipeline(config: ApplicationConfig) -> int:
    """Run proxy and coordinator until interrupted"""
    rule_store = build_rule_store(config)
    filter_engine = FilterEngine(
        rule_store,
        workers=config.scan.filter_workers,
        enabled=config.scan.prefilter_enabled
    )
    analyzer = LLMAnalyzer(config.analyzer)
    reporter = ScanReporter()

    coordinator = ScanCoordinator(
        config.scan,
        analyzer,
        filter_engine=filter_engine,
        callbacks=reporter.callbacks()
    )
    proxy = ProxyServer(config, coordinator)

    stop_requested = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop_requested.set())
    signal.signal(signal.SIGTERM, lambda *_: stop_requested.set())

    logger.info("Starting passive traffic triage", **config.summary())

    try:
        coordinator.start()
        proxy.start()
        console.print(
            f"[green]Proxy listening on {config.proxy.proxy_host}:{config.proxy.proxy_port}"
            " - press Ctrl+C to stop[/green]"
        )
        while not stop_requested.wait(1.0):
            if not proxy.is_running():
                logger.error("Proxy server exited unexpectedly")
                break
    except RuntimeError as e:
        console.print(f"[red]Startup failed: {e}[/red]")
        return 1
    finally:
        if proxy.is_running():
            proxy.stop()
        coordinator.stop()
        filter_engine.shutdown()
        analyzer.close()

    print_results(coordinator)
    return 0


def main(argv=None) -> int:
    args = parse_arguments(argv)

    config = build_config(args)
    configure_logging(config.logging)

    if args.rules_stats:
        return rules_stats_command(build_rule_store(config))

    if args.prefilter:
        engine = FilterEngine(build_rule_store(config), workers=config.scan.filter_workers)
        try:
            return prefilter_command(args.prefilter, engine, config.scan.filter_budget_ms)
        finally:
            engine.shutdown()

    return run_pipeline(config)


if __name__ == "__main__":
    sys.exit(main())
