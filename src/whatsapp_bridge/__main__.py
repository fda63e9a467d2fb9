"""
WhatsApp Bridge - Entry Point

Runs the bridge: one WhatsApp session, an HTTP control plane, and inbound
relay to the configured automation endpoint.
"""

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv

from .config import load_config
from .server import run_bridge

logger = logging.getLogger(__name__)


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="WhatsApp session bridge",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start with bridge.yaml / environment
  python -m whatsapp_bridge

  # Explicit config and port
  python -m whatsapp_bridge --config /etc/whatsapp-bridge/bridge.yaml --port 8080

  # Enable debug logging
  python -m whatsapp_bridge --debug
"""
    )

    parser.add_argument(
        '--config', '-c',
        help='Path to bridge.yaml (default: ./bridge.yaml if present)'
    )

    parser.add_argument(
        '--port', '-p',
        type=int,
        help='Control plane port (overrides PORT and bridge.yaml)'
    )

    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )

    args = parser.parse_args(argv)

    load_dotenv()

    try:
        config = load_config(args.config)
    except (FileNotFoundError, KeyError, ValueError) as e:
        print(f"\n❌ Configuration error: {e}")
        sys.exit(1)

    if args.port:
        config.server.port = args.port

    logging.basicConfig(
        level=logging.DEBUG if args.debug else getattr(logging, config.logging.level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        asyncio.run(run_bridge(config, debug=args.debug))
    except KeyboardInterrupt:
        print("\n\n  Shutting down bridge...")


def run():
    """Entry point for console script"""
    main()


if __name__ == '__main__':
    run()
