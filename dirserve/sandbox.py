"""Map untrusted client paths onto the served directory tree.

Every path derived from a request goes through the same two steps: the
candidate is fully canonicalized (``..`` segments and symlinks resolved,
existence required) and only then compared, component by component, with
the canonical root. String-level filtering alone is never relied upon since
a symlink inside the tree can point anywhere.
"""

import os
import stat
from pathlib import Path, PurePosixPath
from typing import Union

from .errors import (
    InsufficientPermissionsError,
    InvalidHttpRequestError,
    InvalidPathError,
    IoError,
    RouteNotFoundError,
)

INVALID_PATH_PARAMETER = "Invalid value for 'path' parameter"


def canonicalize_root(path: Union[str, Path]) -> Path:
    try:
        return Path(path).resolve(strict=True)
    except (OSError, RuntimeError) as error:
        raise IoError("Failed to resolve path served by dirserve", error) from error


def is_descendant_of(root: Path, target: Path) -> bool:
    """Return True when ``target`` equals ``root`` or lives below it."""

    return target == root or root in target.parents


def _relative_part(client_path: str) -> PurePosixPath:
    if "\x00" in client_path:
        raise InvalidHttpRequestError(INVALID_PATH_PARAMETER)
    if client_path.startswith("/"):
        client_path = client_path[1:]
    relative = PurePosixPath(client_path)
    if relative.is_absolute():
        raise InvalidHttpRequestError(INVALID_PATH_PARAMETER)
    return relative


def resolve(root: Path, client_path: str) -> Path:
    """Resolve ``client_path`` below ``root`` or raise ``InvalidHttpRequestError``."""

    candidate = root.joinpath(*_relative_part(client_path).parts)
    try:
        target = candidate.resolve(strict=True)
    except (OSError, RuntimeError) as error:
        raise InvalidHttpRequestError(INVALID_PATH_PARAMETER) from error

    if not is_descendant_of(root, target):
        raise InvalidHttpRequestError(INVALID_PATH_PARAMETER)
    return target


def resolve_existing(root: Path, client_path: str) -> Path:
    """Variant of :func:`resolve` for read-only routes.

    A target that does not exist is reported as a missing route, an escape
    from the root is still a bad request.
    """

    candidate = root.joinpath(*_relative_part(client_path).parts)
    try:
        target = candidate.resolve(strict=True)
    except (OSError, RuntimeError) as error:
        raise RouteNotFoundError("/" + client_path.lstrip("/")) from error

    if not is_descendant_of(root, target):
        raise InvalidHttpRequestError(INVALID_PATH_PARAMETER)
    return target


def check_target_dir(target_dir: Path, action: str) -> None:
    """Ensure ``target_dir`` is an existing directory the process may write to."""

    try:
        mode = target_dir.stat().st_mode
    except OSError as error:
        raise InsufficientPermissionsError(str(target_dir)) from error

    if not stat.S_ISDIR(mode):
        raise InvalidPathError(
            f"cannot {action} to {target_dir}, since it's not a directory"
        )
    if not os.access(target_dir, os.W_OK | os.X_OK):
        raise InsufficientPermissionsError(str(target_dir))


def contains_symlink(root: Path, client_path: str) -> bool:
    """Return True when any component of ``client_path`` below ``root`` is a symlink."""

    current = root
    for part in _relative_part(client_path).parts:
        current = current / part
        if current.is_symlink():
            return True
    return False
