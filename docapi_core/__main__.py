#!/usr/bin/env python3

import os
import sys
import argparse
import logging

import uvicorn

from docapi_core import settings as _settings
from docapi_core.api.api import create_app


def get_parser(program: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=program)

    commands = parser.add_subparsers(
        description="Available sub-commands: init, run",
        dest="command",
        required=True,
        metavar="<command>",
        help="the sub-command to be executed"
    )

    parser_init = commands.add_parser(
        "init",
        description="Initialize the project by creating a basic config file"
    )
    parser_run = commands.add_parser(
        "run",
        description="Run 'uvicorn' ASGI server to serve the docapi core REST API"
    )

    parser_init.add_argument(
        "--database",
        type=str,
        metavar="url",
        help="Database connection URL including scheme and auth (default: in-memory store)"
    )
    parser_init.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing config file"
    )

    parser_run.add_argument(
        "--config",
        type=str,
        metavar="path",
        default=_settings.CONFIG_PATHS[0],
        help="Path to the JSON config file (default: 'config.json')"
    )
    parser_run.add_argument(
        "--host",
        type=str,
        metavar="host",
        help="Bind TCP socket to this host (overwrites config file option)"
    )
    parser_run.add_argument(
        "--port",
        type=int,
        metavar="port",
        help="Bind TCP socket to this port (overwrites config file option)"
    )
    parser_run.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging of the application"
    )
    parser_run.add_argument(
        "--debug-sql",
        action="store_true",
        help="Print any SQL statements (hint: use together with --debug)"
    )
    parser_run.add_argument(
        "--no-access-log",
        action="store_true",
        help="Disable the access log of the ASGI server"
    )

    return parser


def init_project(args: argparse.Namespace) -> int:
    path = os.path.abspath(_settings.CONFIG_PATHS[0])
    if os.path.exists(path) and not args.force:
        print(f"File {path!r} already exists. Aborting!", file=sys.stderr)
        return 1
    _settings.store_configuration(
        _settings.get_default_core_config(_settings.get_db_from_env(args.database)),
        path
    )
    print(f"Successfully created the new config file {path!r}.")
    return 0


def run_server(args: argparse.Namespace) -> int:
    if args.debug:
        print("Do not start the server this way during production!", file=sys.stderr)

    _settings.CONFIG_PATHS.insert(0, args.config)
    _settings.SETTINGS_EXIT_ON_ERROR = True
    try:
        settings = _settings.Settings()
    except ValueError:
        print("Ensure that the configuration file is valid. Please correct any errors.", file=sys.stderr)
        raise

    if args.debug:
        settings.logging.root["level"] = "DEBUG"
        for handler in settings.logging.handlers:
            settings.logging.handlers[handler]["level"] = "DEBUG"
    if args.debug_sql:
        settings.database.debug_sql = args.debug_sql

    port = args.port
    if port is None:
        port = settings.server.port
    host = args.host
    if host is None:
        host = settings.server.host

    app = create_app(settings=settings)

    logging.getLogger("docapi_core").info(f"Server running at host {host} port {port}")
    uvicorn.run(
        app,
        port=port,
        host=host,
        log_level="debug" if args.debug else "info",
        log_config=settings.logging.model_dump(),
        access_log=not args.no_access_log,
        proxy_headers=True
    )
    return 0


def main() -> int:
    args = get_parser(sys.argv[0]).parse_args()
    if args.command == "init":
        return init_project(args)
    if args.command == "run":
        return run_server(args)
    raise RuntimeError(f"Unknown command {args.command!r}")


if __name__ == "__main__":
    sys.exit(main())
