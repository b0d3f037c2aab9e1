#!/usr/bin/env python3
"""
Command line utility for browser extensions.

    browser-extensions [--config PATH] [--log-level LEVEL] [--log | --log-file PATH] COMMAND

    create NAME [--desc TEXT] [--dir DIR]    create an extension skeleton
    list                                     list known extensions
"""

import argparse
import logging
import os
import sys
from typing import List, Optional

from browser_extensions.extensions.loader import create_extension_structure
from browser_extensions.extensions.manager import ExtensionManager
from browser_extensions.utils.config import Settings, get_default_config_dir
from browser_extensions.utils.logging import LOG_LEVELS, get_default_log_file, setup_logging

logger = logging.getLogger(__name__)


def create_command(args: argparse.Namespace) -> int:
    """Create a new extension skeleton."""
    if args.extensions_dir:
        extensions_dir = args.extensions_dir
    else:
        settings = Settings(args.config, read_only=True)
        extensions_dir = settings.get(
            "extensions.directory",
            os.path.join(get_default_config_dir(), "extensions")
        )

    ext_dir = os.path.join(extensions_dir, args.name)

    if os.path.exists(ext_dir):
        logger.error(f"Extension directory already exists: {ext_dir}")
        return 1

    if not create_extension_structure(ext_dir, args.name, args.description):
        logger.error(f"Failed to create extension: {args.name}")
        return 1

    logger.info(f"Created new extension: {args.name}")
    logger.info(f"Edit the files in {ext_dir} to customize your extension")
    print(ext_dir)
    return 0


def list_command(args: argparse.Namespace) -> int:
    """Print the extension catalog with install and enabled state."""
    manager = ExtensionManager(Settings(args.config, read_only=True))
    manager.initialize()

    for extension in manager.available:
        if not manager.is_installed(extension.id):
            state = "available"
        elif extension.enabled:
            state = "enabled"
        else:
            state = "disabled"
        print(f"{extension.id:<24} {extension.version:<10} {state:<10} {extension.name}")

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="browser-extensions",
                                     description="Manage browser extensions")
    parser.add_argument("--config", help="Path to the settings file")
    parser.add_argument("--log-level", default="WARNING", choices=sorted(LOG_LEVELS),
                        help="Console logging level")
    log_target = parser.add_mutually_exclusive_group()
    log_target.add_argument("--log", action="store_true",
                            help="Also log to the dated file under ~/.browser_extensions/logs")
    log_target.add_argument("--log-file", metavar="PATH", help="Also log to this file")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = True

    create = subparsers.add_parser("create", help="Create a new extension")
    create.add_argument("name", help="Name of the extension (used for directory name)")
    create.add_argument("--desc", dest="description", default="", help="Extension description")
    create.add_argument("--dir", dest="extensions_dir", help="Directory to create the extension in")
    create.set_defaults(func=create_command)

    list_parser = subparsers.add_parser("list", help="List known extensions")
    list_parser.set_defaults(func=list_command)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    log_file = args.log_file or (get_default_log_file() if args.log else None)
    setup_logging(log_file=log_file, console_level=args.log_level)

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
