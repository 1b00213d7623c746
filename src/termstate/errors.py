"""Exceptions raised by termstate."""


class TermstateError(Exception):
    """Base class for termstate errors."""


class LaunchError(TermstateError):
    """No host terminal could be spawned for a session."""


class RestorationCancelled(TermstateError):
    """Restoration was cancelled by the caller."""
