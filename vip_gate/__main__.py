"""Entry point for running the service as a module."""

import argparse
import os
import sys

import uvicorn
from sqlalchemy.engine import make_url

from vip_gate.config import Config, ConfigurationError


def check_config(path: str) -> int:
    """Validate a config file and print what the service would run with.

    Credentials are reported as set or missing, never printed.

    Returns:
        Process exit code: 0 if the file is valid, 1 otherwise
    """
    try:
        config = Config(path)
    except ConfigurationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    def state(value: object) -> str:
        return "set" if value else "MISSING"

    print(f"Config: {config.config_path}")
    print(f"Database: {make_url(config.database.url).render_as_string(hide_password=True)}")
    print(f"Mercado Pago token: {state(config.gateway.access_token)}")
    print(f"Mercado Pago webhook secret: {state(config.gateway.webhook_secret)}")
    print(f"Telegram bot token: {state(config.telegram.bot_token)}")
    print(f"Admins: {len(config.app.admins)}")
    print(f"Sweep every {config.engine.sweep_interval_minutes} min (enabled: {config.engine.sweep_enabled})")
    print(f"Bootstrap settings: {'yes' if config.bootstrap_settings else 'no'}")
    return 0


def main() -> None:
    """Main entry point for VIP Gate."""
    parser = argparse.ArgumentParser(
        description="VIP Gate - payment-gated membership for a restricted Telegram group"
    )
    parser.add_argument(
        "--host",
        default=os.getenv("HOST", "0.0.0.0"),
        help="Host to bind to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("PORT", "8080")),
        help="Port to bind to (default: 8080)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        choices=["json", "console"],
        default=os.getenv("LOG_FORMAT", "json"),
        help="Log output format (default: json)",
    )
    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", "config/vip_gate.yaml"),
        help="Path to vip_gate.yaml (default: config/vip_gate.yaml)",
    )
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Validate the config file and exit without starting the server",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        default=os.getenv("RELOAD", "false").lower() == "true",
        help="Enable auto-reload for development (default: false)",
    )

    args = parser.parse_args()

    if args.check_config:
        sys.exit(check_config(args.config))

    # Settings for the app process (uvicorn imports vip_gate.main itself)
    os.environ["LOG_LEVEL"] = args.log_level
    os.environ["LOG_FORMAT"] = args.log_format
    os.environ["CONFIG_PATH"] = args.config

    if args.log_format == "console":
        print("=" * 60)
        print("VIP Gate v0.1.0")
        print("=" * 60)
        print(f"Host: {args.host}")
        print(f"Port: {args.port}")
        print(f"Log Level: {args.log_level}")
        print(f"Config: {args.config}")
        print("=" * 60)

    try:
        uvicorn.run(
            "vip_gate.main:app",
            host=args.host,
            port=args.port,
            log_level=args.log_level.lower(),
            reload=args.reload,
            access_log=False,  # RequestLoggingMiddleware logs requests
        )
    except KeyboardInterrupt:
        print("\nShutting down gracefully...")
        sys.exit(0)
    except Exception as e:
        print(f"Failed to start VIP Gate: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
