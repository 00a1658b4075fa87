from __future__ import annotations


class FlagExorcistError(Exception):
    """Base class for errors raised by flag-exorcist."""


class ConfigError(FlagExorcistError):
    """Missing or invalid configuration."""


class RepositoryError(FlagExorcistError):
    """The git repository could not be opened."""


class HistoryReadError(FlagExorcistError):
    """A commit, tree or blob could not be read from history."""


class HistoryTimeout(HistoryReadError):
    """Reading history took longer than the configured timeout."""
