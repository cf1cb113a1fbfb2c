from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional

from .app import create_app
from .config import COLOR_SCHEMES, DEFAULT_PORT, load_config
from .errors import ContextualError, NoExplicitPathAndNoTerminal, log_error_chain

LOG = logging.getLogger("dirserve.cli")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="dirserve", description="Serve a directory over HTTP, with optional uploads and Basic auth")
    p.add_argument("path", nargs="?", default=None, help="Directory to serve (defaults to the current directory on a terminal)")
    p.add_argument("--interfaces", "-i", default="0.0.0.0", help="Host/interface to bind")
    p.add_argument("--port", "-p", type=int, default=DEFAULT_PORT, help="Port to listen on")
    p.add_argument(
        "--auth", "-a", action="append", default=None,
        help="Account as username:password, username:sha256:hash or username:sha512:hash (repeatable)",
    )
    p.add_argument("--upload-files", "-u", dest="file_upload", action="store_true", default=None, help="Enable file uploads")
    p.add_argument("--mkdir", dest="mkdir_enabled", action="store_true", default=None, help="Enable directory creation")
    p.add_argument("--overwrite-files", "-o", dest="overwrite_files", action="store_true", default=None, help="Allow uploads to replace existing files")
    p.add_argument("--hidden", "-H", dest="show_hidden", action="store_true", default=None, help="Show hidden files")
    p.add_argument("--no-symlinks", "-P", dest="no_symlinks", action="store_true", default=None, help="Do not follow symlinks")
    p.add_argument("--color-scheme", "-c", dest="default_color_scheme", choices=COLOR_SCHEMES, default=None)
    p.add_argument("--color-scheme-dark", "-d", dest="default_color_scheme_dark", choices=COLOR_SCHEMES, default=None)
    p.add_argument("--title", "-t", default=None, help="Title shown on directory listings")
    p.add_argument("--hide-version-footer", dest="hide_version_footer", action="store_true", default=None)
    p.add_argument("--log-level", default="INFO", help="Logging level")
    return p


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.getLogger().setLevel(getattr(logging, args.log_level.upper(), logging.INFO))

    try:
        if args.path is None and not sys.stdout.isatty():
            raise NoExplicitPathAndNoTerminal()
        config = load_config(
            root_path=args.path,
            auth=args.auth,
            file_upload=args.file_upload,
            mkdir_enabled=args.mkdir_enabled,
            overwrite_files=args.overwrite_files,
            show_hidden=args.show_hidden,
            no_symlinks=args.no_symlinks,
            default_color_scheme=args.default_color_scheme,
            default_color_scheme_dark=args.default_color_scheme_dark,
            title=args.title,
            hide_version_footer=args.hide_version_footer,
        )
    except ContextualError as error:
        log_error_chain(str(error), LOG)
        return 2

    app = create_app(config)
    LOG.info(
        "Serving %s on %s:%d (upload=%s mkdir=%s auth=%s)",
        config.root_path,
        args.interfaces,
        args.port,
        config.file_upload,
        config.mkdir_enabled,
        bool(config.accounts),
    )
    try:
        app.run(host=args.interfaces, port=args.port, threaded=True, debug=False)
    except KeyboardInterrupt:
        LOG.info("Keyboard interrupt received, stopping server")
    except OSError:
        LOG.exception("Server failed")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
