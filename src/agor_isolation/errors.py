"""Custom exceptions for the isolation engine."""


class IsolationError(Exception):
    """Base exception for all isolation engine errors."""

    def __init__(self, message: str, *, details: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(IsolationError):
    """Raised when required configuration is missing or invalid.

    Always raised before any OS or database mutation happens.
    """


class DatabaseNotFoundError(IsolationError):
    """Raised when the application database cannot be located."""

    def __init__(self, path: str, *, sudo_user: str | None = None) -> None:
        super().__init__(
            f"Database not found: {path}",
            details={"path": path, "sudo_user": sudo_user},
        )
        self.path = path
        self.sudo_user = sudo_user


class InvalidUnixNameError(IsolationError):
    """Raised when a value cannot be used as a Unix user or group name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Invalid Unix name: {name!r}", details={"name": name})
        self.name = name
