"""Custom exceptions for the MALDIquant desktop supervisor."""


class MaldiquantDesktopError(Exception):
    """Base exception for all MALDIquant desktop errors."""


class ConfigError(MaldiquantDesktopError):
    """Configuration error."""


class LaunchError(MaldiquantDesktopError):
    """The R process could not be spawned."""


class InvalidStateTransition(MaldiquantDesktopError):
    """A supervised process was asked to move to a state it cannot reach."""
