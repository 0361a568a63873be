#!/usr/bin/env python3
# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
"""
volimporter command line.

    volimporter import          run one import from IMPORTER_* environment
    volimporter upload-server   receive one upload over HTTP and import it
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import List, Optional

from .core.config import Config, load_config
from .core.exceptions import ConfigError, Fatal, format_exception_for_cli
from .core.logger import Log
from .importer.options import ENV_SOURCE, SourceKind
from .importer.worker import run_from_env
from .transports.upload import UploadChannel, UploadServer


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="volimporter",
        description="Import a disk image into a volume",
        epilog="Example: IMPORTER_ENDPOINT=https://host/disk.qcow2 IMPORTER_CERT_DIR=/certs volimporter import",
    )
    parser.add_argument("--config", type=Path, help="YAML config file (importer:/controller: sections)")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More output (-vv debug, -vvv trace)")
    parser.add_argument("-q", "--quiet", action="count", default=0, help="Less output")
    parser.add_argument("--json-logs", action="store_true", help="Emit NDJSON log records")
    parser.add_argument("--log-file", help="Also log to this file")

    sub = parser.add_subparsers(dest="command", required=True)

    imp = sub.add_parser("import", help="Run one import described by IMPORTER_* variables")
    imp.add_argument("--destination", help="Override the destination path")

    up = sub.add_parser("upload-server", help="Receive an upload over HTTP and import it")
    up.add_argument("--host", default="0.0.0.0")
    up.add_argument("--port", type=int, default=8443)
    up.add_argument("--destination", help="Override the destination path")
    return parser


def _run_import(args: argparse.Namespace, conf: Config, logger) -> int:
    return run_from_env(
        os.environ,
        conf.importer,
        default_destination=args.destination or conf.controller.destination_path,
        logger=logger,
        install_signals=True,
    )


def _run_upload_server(args: argparse.Namespace, conf: Config, logger) -> int:
    channel = UploadChannel()
    server = UploadServer(
        channel,
        args.host,
        args.port,
        result_timeout_s=conf.importer.upload_wait_timeout_s + conf.importer.registry_timeout_s,
        logger=logger,
    )
    env = dict(os.environ)
    env[ENV_SOURCE] = SourceKind.UPLOAD.value
    server.start()
    try:
        return run_from_env(
            env,
            conf.importer,
            default_destination=args.destination or conf.controller.destination_path,
            upload_channel=channel,
            logger=logger,
            install_signals=True,
        )
    finally:
        server.stop()


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    logger = Log.setup(args.verbose, args.log_file, quiet=args.quiet, json_logs=args.json_logs)

    try:
        conf = load_config(args.config)
    except ConfigError as e:
        logger.error("💥 %s", format_exception_for_cli(e, verbose=args.verbose))
        raise SystemExit(2)

    try:
        if args.command == "upload-server":
            rc = _run_upload_server(args, conf, logger)
        else:
            rc = _run_import(args, conf, logger)
    except Fatal as e:
        logger.error("%s", e)
        rc = e.code
    except KeyboardInterrupt:
        logger.warning("Interrupted by user (Ctrl+C).")
        rc = 130
    except Exception as e:
        logger.error("💥 UNHANDLED %s: %s", type(e).__name__, e)
        logger.debug("Traceback", exc_info=True)
        rc = 1
    raise SystemExit(rc)


if __name__ == "__main__":
    main(sys.argv[1:])
