"""
Command-line entry point.

    mongosync SOURCE_URI TARGET_URI DB1,DB2,... [LOOKBACK_HOURS]
"""

from typing import Any, Dict, List, Optional
import argparse
import logging
import sys

from pydantic import ValidationError
from pymongo.errors import ConfigurationError

from config.settings import load_settings
from .exceptions import SourceStreamError
from .replication import metrics
from .replication.session import ReplicationSession
from .utils.logging import configure_logging, set_run_id

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_HOURS = 50


def parse_lookback(value: Optional[str]) -> int:
    """Lookback hours from the optional positional; unparsable values mean the default."""
    if value is None:
        return DEFAULT_LOOKBACK_HOURS
    try:
        return int(value)
    except ValueError:
        return DEFAULT_LOOKBACK_HOURS


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mongosync",
        description="Mirror selected MongoDB databases from a source to a target using change streams"
    )
    parser.add_argument("source_uri", help="Source connection string")
    parser.add_argument("target_uri", help="Target connection string")
    parser.add_argument("databases", help="Comma-separated database names to replicate")
    parser.add_argument(
        "lookback_hours",
        nargs="?",
        default=None,
        help=f"Start this many hours before now (default {DEFAULT_LOOKBACK_HOURS})"
    )
    parser.add_argument("--batch-size", type=int, help="Change stream batch size")
    parser.add_argument(
        "--transaction-timeout",
        type=float,
        help="Seconds allowed for one change's transaction"
    )
    parser.add_argument(
        "--apply-attempts",
        type=int,
        help="Attempts per change on transient write errors"
    )
    parser.add_argument(
        "--native-ids",
        action="store_true",
        default=None,
        help="Match _id by native value instead of its string form"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Print changes without replaying them to the target"
    )
    parser.add_argument("--log-level", help="Logging level")
    parser.add_argument("--log-format", choices=["text", "json"], help="Log output format")
    parser.add_argument("--metrics-port", type=int, help="Expose Prometheus metrics on this port")
    return parser


def settings_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Settings fields from parsed arguments; unset options fall through to the environment."""
    overrides: Dict[str, Any] = {
        "source_uri": args.source_uri,
        "target_uri": args.target_uri,
        "databases": args.databases,
        "lookback_hours": parse_lookback(args.lookback_hours),
    }
    optional = {
        "batch_size": args.batch_size,
        "transaction_timeout": args.transaction_timeout,
        "apply_attempts": args.apply_attempts,
        "dry_run": args.dry_run,
        "log_level": args.log_level,
        "log_format": args.log_format,
        "metrics_port": args.metrics_port,
    }
    if args.native_ids:
        optional["compare_ids_as_strings"] = False
    overrides.update({key: value for key, value in optional.items() if value is not None})
    return overrides


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(**settings_overrides(args))
    except ValidationError as e:
        print(f"Invalid configuration:\n{e}", file=sys.stderr)
        return 2

    configure_logging(settings.log_level, settings.log_format)
    run_id = set_run_id()
    logger.info(f"Starting run {run_id}")

    if settings.metrics_port:
        metrics.start_metrics_server(settings.metrics_port)
        logger.info(f"Metrics exposed on port {settings.metrics_port}")

    try:
        session = ReplicationSession.open(settings)
    except (ConfigurationError, ValueError) as e:
        print(f"Invalid configuration:\n{e}", file=sys.stderr)
        return 2

    with session:
        try:
            session.run(handle_signals=True)
        except SourceStreamError:
            logger.exception("Replication aborted")
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
