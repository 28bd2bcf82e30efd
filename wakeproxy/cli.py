"""Wake-on-Connect Minecraft Gateway - command line interface

A Python service that stands in for a Minecraft server while it is down,
answering server list pings and asking the Pterodactyl panel to start the
server when a player tries to join. Once the server is up, connections are
relayed to it transparently.
"""

import asyncio
import argparse
import logging
import logging.handlers
import sys
from pathlib import Path

from . import __version__
from .config_manager import ConfigManager
from .proxy_manager import ProxyManager
from .pterodactyl_client import PterodactylClient


def setup_logging(config: dict) -> None:
    """Set up logging configuration."""
    log_config = config.get("logging", {})
    log_level = getattr(logging, log_config.get("level", "INFO").upper())
    log_file = log_config.get("file", "/var/log/wake-proxy.log")
    max_size_mb = log_config.get("max_size_mb", 10)
    backup_count = log_config.get("backup_count", 3)
    console_output = log_config.get("console_output", True)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    # File handler with rotation
    try:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

        logging.info(f"Logging configured - Level: {log_config.get('level', 'INFO')}, File: {log_file}")

    except OSError as e:
        print(f"Warning: Could not set up file logging: {e}", file=sys.stderr)
        print("Continuing with console logging only", file=sys.stderr)


async def main_service(args) -> int:
    """Main service function."""
    try:
        config = ConfigManager(args.config).load_config()
    except Exception as e:
        print(f"Failed to load configuration: {e}", file=sys.stderr)
        return 1

    setup_logging(config)

    logging.info("Starting wake-on-connect gateway")
    logging.info(f"Configuration loaded from: {args.config}")

    proxy_manager = ProxyManager(config)

    if not proxy_manager.initialize():
        logging.error("Failed to initialize proxy")
        return 1

    if not await proxy_manager.start():
        logging.error("Failed to start proxy service")
        return 1

    await proxy_manager.run_forever()

    logging.info("Wake-on-connect gateway stopped")
    return 0


def create_example_config(path: str) -> None:
    """Create an example configuration file."""
    config_manager = ConfigManager()
    config_manager.save_example_config(path)
    print(f"Example configuration saved to: {path}")


def validate_config(path: str) -> None:
    """Validate configuration file."""
    try:
        config_manager = ConfigManager(path)
        config = config_manager.load_config()
        print(f"Configuration file {path} is valid")

        request_info = PterodactylClient(config).get_request_info()

        print("\nConfiguration Summary:")
        print(f"  Listen: {config_manager.get('proxy.listen_address')}:{config_manager.get('proxy.listen_port')}")
        print(f"  Backend: {config_manager.get('server.host')}:{config_manager.get('server.port')}")
        print(f"  Health Check: every {config_manager.get('timing.health_check_interval')}s "
              f"(timeout {config_manager.get('timing.server_check_timeout')}s)")
        print(f"  Power URL: {request_info['power_url']}")
        print(f"  API Key: {'Set' if request_info['api_key_set'] else 'Missing'}")

    except Exception as e:
        print(f"Configuration validation failed: {e}", file=sys.stderr)
        sys.exit(1)


def main():
    """Main entry point with command line argument handling."""
    parser = argparse.ArgumentParser(
        description="Wake-on-Connect Minecraft Gateway",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                               # Run with default config.json
  %(prog)s --config /etc/wake-proxy.json # Run with custom config
  %(prog)s --create-config               # Create example config
  %(prog)s --validate-config             # Validate current config
        """
    )

    parser.add_argument(
        '--config', '-c',
        default='config.json',
        help='Configuration file path (default: config.json)'
    )

    parser.add_argument(
        '--create-config',
        action='store_true',
        help='Create an example configuration file'
    )

    parser.add_argument(
        '--validate-config',
        action='store_true',
        help='Validate the configuration file'
    )

    parser.add_argument(
        '--version', '-v',
        action='version',
        version=f'Wake-on-Connect Gateway {__version__}'
    )

    args = parser.parse_args()

    if args.create_config:
        create_example_config(args.config + '.example')
        return 0

    if args.validate_config:
        validate_config(args.config)
        return 0

    try:
        return asyncio.run(main_service(args))
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 0
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        return 1

