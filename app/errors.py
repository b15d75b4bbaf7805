"""Exception types shared across the engine."""

from __future__ import annotations


class RecollectError(Exception):
    """Base class for engine errors."""


class ConfigurationMissing(RecollectError, ValueError):
    """A component was constructed without a setting it requires."""

    def __init__(self, component: str, setting: str):
        super().__init__(f"{component} requires {setting} to be configured")
        self.component = component
        self.setting = setting


class UpstreamUnavailable(RecollectError):
    """The scoring service could not be reached or returned an unusable reply."""
