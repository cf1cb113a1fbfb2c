import logging
import os
import posixpath
import re
import uuid
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from flask import Flask, Response, current_app, g, has_request_context, make_response, redirect, request, send_file
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from .auth import authorize
from .config import APP_NAME, ServerConfig
from .errors import (
    ContextualError,
    HttpAuthenticationError,
    InvalidHttpRequestError,
    RouteNotFoundError,
    log_error_chain,
)
from .listing import QueryParameters, extract_query_parameters, list_directory
from .renderer import render_error, render_listing
from .sandbox import canonicalize_root, contains_symlink, resolve, resolve_existing
from .uploads import create_directory, ingest, iter_multipart

LOG_FILE_MAX_BYTES = 5 * 1024 * 1024  # 5 MB max log file size
LOG_FILE_BACKUP_COUNT = 3  # Number of log file backups to keep
CONFIG_KEY = "DIRSERVE_CONFIG"

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, LOG_LEVEL, logging.INFO)
logging.basicConfig(
    level=numeric_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

_CONTROL_CHAR_PATTERN = re.compile(r"[\x00-\x1f\x7f-\x9f\n\r]")


def sanitize_log_value(value: Any) -> Any:
    """Remove control characters from log values to prevent log injection."""

    if isinstance(value, str):
        return _CONTROL_CHAR_PATTERN.sub("", value)
    return value


class RequestAwareLogger:
    """Logger wrapper that injects request IDs into log messages."""

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def _with_request(self, message: str) -> str:
        if has_request_context():
            request_id = getattr(g, "request_id", None)
            if request_id:
                return f"request_id={request_id} {message}"
        return message

    def info(self, msg: str, *args, **kwargs) -> None:
        self._logger.info(self._with_request(msg), *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs) -> None:
        self._logger.warning(self._with_request(msg), *args, **kwargs)

    def error(self, msg: str, *args, **kwargs) -> None:
        self._logger.error(self._with_request(msg), *args, **kwargs)


_base_lifecycle_logger = logging.getLogger("dirserve.lifecycle")
lifecycle_logger = RequestAwareLogger(_base_lifecycle_logger)


def configure_file_logging(log_dir: Path) -> Path:
    """Attach a rotating file handler writing to ``log_dir``."""

    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / "dirserve.log"
    root_logger = logging.getLogger()
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")

    for handler in root_logger.handlers:
        if isinstance(handler, RotatingFileHandler) and getattr(handler, "baseFilename", "") == str(log_path):
            handler.setFormatter(formatter)
            return log_path

    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)
    return log_path


def current_config() -> ServerConfig:
    return current_app.config[CONFIG_KEY]


def return_path() -> str:
    return request.headers.get("Referer") or "/"


def _target_dir(params: QueryParameters) -> Path:
    if params.path is None:
        raise InvalidHttpRequestError("Missing query parameter 'path'")
    root = canonicalize_root(current_config().root_path)
    return resolve(root, params.path)


def error_response(error: ContextualError) -> Response:
    """Log ``error`` and turn it into the rendered error page."""

    config = current_config()
    log_error_chain(str(error), lifecycle_logger)
    status = error.status_code
    params = extract_query_parameters(request.args)
    is_auth_error = isinstance(error, HttpAuthenticationError)
    body = render_error(
        str(error),
        status,
        "/" if is_auth_error else return_path(),
        params.sort,
        params.order,
        config.default_color_scheme,
        config.default_color_scheme_dark,
        has_referer=True,
        hide_version_footer=config.hide_version_footer,
    )
    response = make_response(body, status)
    response.headers["Content-Type"] = "text/html; charset=utf-8"
    if status == 401:
        response.headers["WWW-Authenticate"] = f'Basic realm="{APP_NAME}"'
    return response


def create_app(config: ServerConfig) -> Flask:
    app = Flask(__name__, static_folder=None)
    app.config[CONFIG_KEY] = config
    app.config["RATELIMIT_HEADERS_ENABLED"] = True
    if config.log_dir is not None:
        configure_file_logging(config.log_dir)

    limiter = Limiter(get_remote_address, app=app, storage_uri="memory://")

    @app.before_request
    def add_request_id() -> None:
        """Assign a request identifier for downstream logging."""

        g.request_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)

    @app.before_request
    def check_authorization() -> None:
        decision = authorize(request.headers.get("Authorization"), current_config().accounts)
        if not decision.allowed:
            lifecycle_logger.warning(
                "auth_rejected method=%s path=%s ip=%s",
                request.method,
                sanitize_log_value(request.path),
                request.remote_addr or "unknown",
            )
            raise decision.error

    @app.after_request
    def log_request_completion(response: Response):
        """Emit lifecycle logs for every completed request."""

        lifecycle_logger.info(
            "request_completed method=%s path=%s status=%d",
            request.method,
            sanitize_log_value(request.path),
            response.status_code,
        )
        return response

    @app.after_request
    def add_security_headers(response: Response):
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "same-origin"
        if hasattr(g, "request_id"):
            response.headers["X-Request-ID"] = g.request_id
        return response

    @app.errorhandler(ContextualError)
    def handle_contextual_error(error: ContextualError):
        return error_response(error)

    @app.errorhandler(429)
    def handle_rate_limit(error):
        description = getattr(error, "description", "Too many requests")
        lifecycle_logger.warning("rate_limited path=%s", sanitize_log_value(request.path))
        config = current_config()
        body = render_error(
            f"Rate limit exceeded\ncaused by: {description}",
            429,
            return_path(),
            color_scheme=config.default_color_scheme,
            color_scheme_dark=config.default_color_scheme_dark,
            hide_version_footer=config.hide_version_footer,
        )
        return make_response(body, 429, {"Content-Type": "text/html; charset=utf-8"})

    @app.route("/upload", methods=["POST"])
    @limiter.limit(lambda: current_config().upload_rate_limit)
    def upload_file():
        config = current_config()
        if not config.file_upload:
            raise RouteNotFoundError(request.path)
        params = extract_query_parameters(request.args)
        target_dir = _target_dir(params)

        fields = iter_multipart(request.stream, request.headers.get("Content-Type"))
        saved = ingest(fields, target_dir, config.overwrite_files)
        lifecycle_logger.info(
            "upload_completed target=%s files=%d bytes=%d",
            sanitize_log_value(str(target_dir)),
            len(saved),
            sum(size for _, size in saved),
        )
        return redirect(return_path(), code=303)

    @app.route("/mkdir", methods=["POST"])
    @limiter.limit(lambda: current_config().upload_rate_limit)
    def make_directory():
        config = current_config()
        if not config.mkdir_enabled:
            raise RouteNotFoundError(request.path)
        params = extract_query_parameters(request.args)
        if params.path is None:
            raise InvalidHttpRequestError("Missing query parameter 'path'")
        mkdir_name = request.form.get("mkdir_name")
        if mkdir_name is None:
            raise InvalidHttpRequestError("Missing query parameter 'mkdir_name'")
        target_dir = _target_dir(params)

        created = create_directory(target_dir, mkdir_name)
        lifecycle_logger.info("mkdir_completed path=%s", sanitize_log_value(str(created)))
        return redirect(return_path(), code=303)

    @app.route("/", defaults={"subpath": ""})
    @app.route("/<path:subpath>")
    def serve(subpath: str):
        config = current_config()
        root = canonicalize_root(config.root_path)
        target = resolve_existing(root, subpath)
        if config.no_symlinks and contains_symlink(root, subpath):
            raise RouteNotFoundError("/" + subpath)

        if not target.is_dir():
            return send_file(target, as_attachment=False)

        params = extract_query_parameters(request.args)
        entries = list_directory(
            target,
            root,
            show_hidden=config.show_hidden,
            no_symlinks=config.no_symlinks,
            sort=params.sort,
            order=params.order,
        )
        relative = target.relative_to(root).as_posix()
        current_path = "/" if relative == "." else f"/{relative}/"
        parent_href: Optional[str] = None
        if current_path != "/":
            parent = posixpath.dirname(current_path.rstrip("/"))
            parent_href = parent if parent.endswith("/") else parent + "/"
        body = render_listing(config, current_path, entries, params.sort, params.order, parent_href)
        return make_response(body, 200, {"Content-Type": "text/html; charset=utf-8"})

    return app
