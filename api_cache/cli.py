"""Command-line interface for api-cache."""

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from api_cache.cache.converter import ResponsesTableCompressionConverter, ResponsesTableDecompressionConverter
from api_cache.core.config import ConfigurationManager
from api_cache.core.exceptions import ApiCacheError
from api_cache.core.manager import ApiCacheManager
from api_cache.utils.logger import configure_logging


def load_config(config_path: Path) -> Dict[str, Any]:
    """Load configuration from JSON file."""
    try:
        with open(config_path, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        print(f"Error: Configuration file not found: {config_path}", file=sys.stderr)
        sys.exit(1)
    except json.JSONDecodeError as e:
        print(f"Error: Invalid JSON in configuration file: {e}", file=sys.stderr)
        sys.exit(1)


def create_default_config() -> Dict[str, Any]:
    """Default configuration, seeded from environment variables."""
    config: Dict[str, Any] = {
        "database": {"path": os.environ.get("API_CACHE_DB_PATH", "api_cache.db")},
        "logging": {"level": os.environ.get("API_CACHE_LOG_LEVEL", "WARNING")},
    }
    redis_url = os.environ.get("API_CACHE_REDIS_URL")
    if redis_url:
        config["rate_limit"] = {"backend": "redis", "redis_url": redis_url}
    return config


def parse_params(pairs: List[str]) -> Dict[str, Any]:
    """Turn ``key=value`` pairs into params; values are parsed as JSON when possible."""
    params: Dict[str, Any] = {}
    for pair in pairs:
        if "=" not in pair:
            raise argparse.ArgumentTypeError(f"Expected key=value, got {pair!r}")
        key, value = pair.split("=", 1)
        try:
            params[key] = json.loads(value)
        except json.JSONDecodeError:
            params[key] = value
    return params


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="api-cache",
        description="api-cache - response cache and rate-limit maintenance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  api-cache --config config.json cleanup              # Delete expired rows for all clients
  api-cache key openai chat/completions --param model=gpt-4
  api-cache rate-limit openai --clear                 # Reset the rate-limit window
  api-cache convert openai --batch-size 500           # Copy rows into the compressed table
  api-cache validate openai                           # Check converted rows against the source
        """,
    )
    parser.add_argument("--config", "-c", type=Path, help="Path to configuration JSON file")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Set logging level (overrides configuration)",
    )
    parser.add_argument("--version", action="version", version="%(prog)s 0.1.0")

    sub = parser.add_subparsers(dest="command", required=True)

    key = sub.add_parser("key", help="Print the cache key for a request")
    key.add_argument("client")
    key.add_argument("endpoint")
    key.add_argument("--param", "-p", action="append", default=[], help="Request parameter as key=value")
    key.add_argument("--method", default="GET")
    key.add_argument("--api-version", dest="api_version", default=None)

    cleanup = sub.add_parser("cleanup", help="Delete expired cached responses")
    cleanup.add_argument("client", nargs="?", default=None)

    clear = sub.add_parser("clear", help="Delete every cached response of a client")
    clear.add_argument("client")

    rate_limit = sub.add_parser("rate-limit", help="Show or reset a client's rate-limit window")
    rate_limit.add_argument("client")
    rate_limit.add_argument("--clear", action="store_true", help="Reset the window")

    for name, help_text in (
        ("convert", "Copy rows between the uncompressed and compressed tables"),
        ("validate", "Validate converted rows against their source rows"),
    ):
        command = sub.add_parser(name, help=help_text)
        command.add_argument("client")
        command.add_argument("--batch-size", type=int, default=None)
        command.add_argument("--decompress", action="store_true", help="Convert compressed -> uncompressed")
        command.add_argument("--overwrite", action="store_true", help="Rewrite rows that already exist")
        command.add_argument(
            "--copy-processing-state", action="store_true", help="Copy processed_at/processed_status"
        )

    return parser


def run(args: argparse.Namespace, config: ConfigurationManager) -> Dict[str, Any]:
    manager = ApiCacheManager.from_config(config)
    try:
        return execute(args, config, manager)
    finally:
        manager.close()


def execute(args: argparse.Namespace, config: ConfigurationManager, manager: ApiCacheManager) -> Dict[str, Any]:
    """Dispatch one subcommand and return its JSON-serializable result."""
    if args.command == "key":
        return {
            "key": manager.generate_cache_key(
                args.client, args.endpoint, parse_params(args.param), args.method, args.api_version
            )
        }

    if args.command == "cleanup":
        return {"deleted": manager.cleanup(args.client)}

    if args.command == "clear":
        table = manager.get_table_name(args.client)
        manager.clear_table(args.client)
        return {"cleared": table}

    if args.command == "rate-limit":
        if args.clear:
            manager.clear_rate_limit(args.client)
        state = manager.rate_limiter.get_state(args.client)
        return {
            "client": state.client,
            "remaining": None if state.unlimited else state.remaining,
            "max_attempts": state.max_attempts,
            "decay_seconds": state.decay_seconds,
            "available_in": state.available_in,
        }

    settings = config.config["converter"]
    converter_class = ResponsesTableDecompressionConverter if args.decompress else ResponsesTableCompressionConverter
    converter = converter_class(
        args.client,
        manager.repository,
        batch_size=args.batch_size or settings["batch_size"],
        overwrite=args.overwrite or settings["overwrite"],
        copy_processing_state=args.copy_processing_state or settings["copy_processing_state"],
    )
    if args.command == "convert":
        return converter.convert_all().as_dict()
    return converter.validate_all().as_dict()


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    user_config = load_config(args.config) if args.config else create_default_config()
    if args.log_level:
        user_config.setdefault("logging", {})["level"] = args.log_level

    try:
        config = ConfigurationManager(user_config)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    configure_logging(config.config["logging"])

    try:
        result = run(args, config)
    except (ApiCacheError, argparse.ArgumentTypeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
