import logging
from typing import Optional

logger = logging.getLogger("dirserve.errors")


class ContextualError(Exception):
    """Base class for every failure the server knows how to report.

    Subclasses carry just enough data to render a message and to derive the
    HTTP status that represents them. ``str(error)`` yields the full cause
    chain, one cause per line.
    """

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class IoError(ContextualError):
    """Any kind of I/O failure."""

    def __init__(self, context: str, error: OSError) -> None:
        super().__init__(f"{context}\ncaused by: {error}")
        self.context = context
        self.error = error


class MultipartError(ContextualError):
    """Processing the multipart request body failed."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Failed to process multipart request\ncaused by: {reason}")
        self.reason = reason


class DuplicateFileError(ContextualError):
    def __init__(self) -> None:
        super().__init__(
            "File already exists, and the overwrite_files option has not been set"
        )


class ConflictMkdirError(ContextualError):
    status_code = 409

    def __init__(self, path: Optional[str] = None) -> None:
        message = "Directory already exists"
        if path:
            message = f"{message}\ncaused by: {path}"
        super().__init__(message)
        self.path = path


class InvalidPathError(ContextualError):
    """Invalid entry name, unexpected entry type and similar."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Invalid path\ncaused by: {reason}")
        self.reason = reason


class InvalidAuthFormat(ContextualError):
    def __init__(self) -> None:
        super().__init__(
            "Invalid format for credentials string. "
            "Expected username:password, username:sha256:hash or username:sha512:hash"
        )


class InvalidHashMethod(ContextualError):
    def __init__(self, method: str) -> None:
        super().__init__(f"{method} is not a valid hashing method. Expected sha256 or sha512")
        self.method = method


class InvalidPasswordHash(ContextualError):
    def __init__(self) -> None:
        super().__init__("Invalid format for password hash. Expected hex code")


class PasswordTooLongError(ContextualError):
    def __init__(self) -> None:
        super().__init__("HTTP password length exceeds 255 characters")


class InsufficientPermissionsError(ContextualError):
    status_code = 403

    def __init__(self, path: str) -> None:
        super().__init__(f"Insufficient permissions to create file in {path}")
        self.path = path


class ParseError(ContextualError):
    status_code = 400

    def __init__(self, subject: str, reason: str) -> None:
        super().__init__(f"Failed to parse {subject}\ncaused by: {reason}")
        self.subject = subject
        self.reason = reason


class ArchiveCreationError(ContextualError):
    def __init__(self, archive: str, cause: ContextualError) -> None:
        super().__init__(f"An error occured while creating the {archive}\ncaused by: {cause}")
        self.archive = archive
        self.cause = cause

    @property
    def status_code(self) -> int:  # type: ignore[override]
        return self.cause.status_code


class ArchiveCreationDetailError(ContextualError):
    """More specific reason an archive could not be built."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class HttpAuthenticationError(ContextualError):
    def __init__(self, cause: ContextualError) -> None:
        super().__init__(f"An error occured during HTTP authentication\ncaused by: {cause}")
        self.cause = cause

    @property
    def status_code(self) -> int:  # type: ignore[override]
        return self.cause.status_code


class InvalidHttpCredentials(ContextualError):
    status_code = 401

    def __init__(self) -> None:
        super().__init__("Invalid credentials for HTTP authentication")


class InvalidHttpRequestError(ContextualError):
    status_code = 400

    def __init__(self, reason: str) -> None:
        super().__init__(f"Invalid HTTP request\ncaused by: {reason}")
        self.reason = reason


class RouteNotFoundError(ContextualError):
    status_code = 404

    def __init__(self, route: str) -> None:
        super().__init__(f"Route {route} could not be found")
        self.route = route


class NoExplicitPathAndNoTerminal(ContextualError):
    def __init__(self) -> None:
        super().__init__(
            "Refusing to start as no explicit serve path was set and no interactive terminal was attached\n"
            "Please set an explicit serve path like: `dirserve /my/path`"
        )


class NoSymlinksOptionWithSymlinkServePath(ContextualError):
    def __init__(self, path: str) -> None:
        super().__init__(
            f"The -P|--no-symlinks option was provided but the serve path '{path}' is a symlink"
        )
        self.path = path


def log_error_chain(description: str, log=None) -> None:
    """Emit one error line per cause in ``description``."""

    log = log or logger
    for cause in description.splitlines():
        log.error("%s", cause)
