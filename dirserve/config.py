import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterable, Optional, Tuple

from .auth import HASH_ALGORITHMS, Account, HashedPassword, PlainPassword
from .errors import (
    InvalidAuthFormat,
    InvalidHashMethod,
    InvalidPasswordHash,
    NoSymlinksOptionWithSymlinkServePath,
    PasswordTooLongError,
)
from .sandbox import canonicalize_root

logger = logging.getLogger("dirserve.config")

APP_NAME = "dirserve"
MAX_PLAIN_PASSWORD_LENGTH = 255
COLOR_SCHEMES = ("squirrel", "archlinux", "zenburn", "monokai")
DEFAULT_COLOR_SCHEME = "squirrel"
DEFAULT_COLOR_SCHEME_DARK = "archlinux"
DEFAULT_UPLOAD_RATE_LIMIT_PER_MINUTE = 60
DEFAULT_PORT = 8080
_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ServerConfig:
    """Settings resolved once before the server accepts connections."""

    root_path: Path
    accounts: Tuple[Account, ...] = ()
    file_upload: bool = False
    mkdir_enabled: bool = False
    overwrite_files: bool = False
    show_hidden: bool = False
    no_symlinks: bool = False
    default_color_scheme: str = DEFAULT_COLOR_SCHEME
    default_color_scheme_dark: str = DEFAULT_COLOR_SCHEME_DARK
    title: Optional[str] = None
    hide_version_footer: bool = False
    upload_rate_limit_per_minute: int = DEFAULT_UPLOAD_RATE_LIMIT_PER_MINUTE
    log_dir: Optional[Path] = None

    @property
    def upload_rate_limit(self) -> str:
        return f"{self.upload_rate_limit_per_minute} per minute"


def parse_auth(src: str) -> Account:
    """Parse ``username:password`` or ``username:sha256|sha512:hexdigest``."""

    username, separator, rest = src.partition(":")
    if not separator:
        raise InvalidAuthFormat()

    method, separator, hash_hex = rest.partition(":")
    if not separator:
        if len(rest) > MAX_PLAIN_PASSWORD_LENGTH:
            raise PasswordTooLongError()
        return Account(username=username, password=PlainPassword(rest))

    try:
        digest = bytes.fromhex(hash_hex)
    except ValueError as error:
        raise InvalidPasswordHash() from error

    expected_length = HASH_ALGORITHMS.get(method)
    if expected_length is None:
        raise InvalidHashMethod(method)
    if len(digest) != expected_length:
        raise InvalidPasswordHash()
    return Account(username=username, password=HashedPassword(method, digest))


def parse_accounts(values: Iterable[str]) -> Tuple[Account, ...]:
    return tuple(parse_auth(value) for value in values if value)


def _get_env_bool(env_key: str, default: bool = False) -> bool:
    value = os.environ.get(env_key)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in _TRUE_VALUES


def _safe_int_env(key: str, default: int, min_value: int = 1) -> int:
    """Safely parse integer environment variable with error handling."""
    try:
        return max(min_value, int(os.environ.get(key, str(default))))
    except (TypeError, ValueError):
        logger.warning(
            "Invalid value for %s: %s. Using default: %d",
            key, os.environ.get(key), default
        )
        return default


def _color_scheme(value: Optional[str], default: str) -> str:
    if not value:
        return default
    normalized = value.strip().lower()
    if normalized not in COLOR_SCHEMES:
        logger.warning("Unknown color scheme %s. Using default: %s", value, default)
        return default
    return normalized


def _resolve_env_path(env_key: str) -> Optional[Path]:
    value = os.environ.get(env_key)
    if value:
        return Path(value).expanduser().resolve()
    return None


def load_config(**overrides) -> ServerConfig:
    """Build the server configuration from ``DIRSERVE_*`` variables.

    Keyword arguments (typically coming from the command line) take
    precedence over the environment. ``None`` overrides are ignored.
    """

    overrides = {key: value for key, value in overrides.items() if value is not None}

    root_value = overrides.pop("root_path", None) or os.environ.get("DIRSERVE_ROOT") or "."
    no_symlinks = overrides.pop("no_symlinks", _get_env_bool("DIRSERVE_NO_SYMLINKS"))
    if no_symlinks and Path(root_value).is_symlink():
        raise NoSymlinksOptionWithSymlinkServePath(str(root_value))
    root_path = canonicalize_root(root_value)

    auth_values = overrides.pop("auth", None)
    if auth_values is None:
        auth_values = os.environ.get("DIRSERVE_AUTH", "").split(",")

    config = ServerConfig(
        root_path=root_path,
        accounts=parse_accounts(value.strip() for value in auth_values),
        file_upload=_get_env_bool("DIRSERVE_UPLOAD_FILES"),
        mkdir_enabled=_get_env_bool("DIRSERVE_MKDIR"),
        overwrite_files=_get_env_bool("DIRSERVE_OVERWRITE_FILES"),
        show_hidden=_get_env_bool("DIRSERVE_HIDDEN"),
        no_symlinks=no_symlinks,
        default_color_scheme=_color_scheme(
            overrides.pop("default_color_scheme", None) or os.environ.get("DIRSERVE_COLOR_SCHEME"),
            DEFAULT_COLOR_SCHEME,
        ),
        default_color_scheme_dark=_color_scheme(
            overrides.pop("default_color_scheme_dark", None)
            or os.environ.get("DIRSERVE_COLOR_SCHEME_DARK"),
            DEFAULT_COLOR_SCHEME_DARK,
        ),
        title=os.environ.get("DIRSERVE_TITLE") or None,
        upload_rate_limit_per_minute=_safe_int_env(
            "DIRSERVE_RATE_LIMIT_UPLOADS_PER_MINUTE", DEFAULT_UPLOAD_RATE_LIMIT_PER_MINUTE
        ),
        log_dir=_resolve_env_path("DIRSERVE_LOG_DIR"),
    )
    # Boolean switches from the command line only ever turn features on.
    overrides = {key: value for key, value in overrides.items() if value is not False}
    return replace(config, **overrides)
