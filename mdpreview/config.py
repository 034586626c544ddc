"""Configuration defaults for image loading and preview rendering.

All settings are plain frozen dataclasses passed explicitly to the
objects that use them.  There is no process-wide configuration state;
each document session builds (or shares) its own config instances.
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_MAX_LOCAL_CACHE = 100
"""Maximum number of decoded local images kept in memory."""

DEFAULT_MAX_REMOTE_CACHE = 50
"""Maximum number of decoded remote images kept in memory."""

DEFAULT_CONNECT_TIMEOUT_S = 30.0
"""Seconds to wait for the first byte of a remote image response."""

DEFAULT_TOTAL_TIMEOUT_S = 60.0
"""Upper bound in seconds for a whole remote image download."""

DEFAULT_DEBOUNCE_DELAY_S = 0.5
"""Quiet period after the last edit before the preview re-renders."""

DEFAULT_USER_AGENT = "mdpreview/0.3 (+markdown image preview)"


@dataclass(frozen=True)
class LoaderConfig:
    """Bounds and timeouts for :class:`~mdpreview.loader.SecureImageLoader`."""

    max_local_cache: int = DEFAULT_MAX_LOCAL_CACHE
    max_remote_cache: int = DEFAULT_MAX_REMOTE_CACHE
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_S
    """Per-phase transport timeout (connect, first byte, each read)."""
    total_timeout: float = DEFAULT_TOTAL_TIMEOUT_S
    """Wall-clock limit for one download including body streaming."""
    user_agent: str = DEFAULT_USER_AGENT

    def __post_init__(self) -> None:
        if self.max_local_cache < 1 or self.max_remote_cache < 1:
            raise ValueError(
                "cache sizes must be at least 1 "
                f"(local={self.max_local_cache}, remote={self.max_remote_cache})"
            )
        if self.connect_timeout <= 0 or self.total_timeout <= 0:
            raise ValueError(
                "timeouts must be positive "
                f"(connect={self.connect_timeout}, total={self.total_timeout})"
            )


@dataclass(frozen=True)
class RenderConfig:
    """Timing for :class:`~mdpreview.scheduler.RenderScheduler`."""

    debounce_delay: float = DEFAULT_DEBOUNCE_DELAY_S

    def __post_init__(self) -> None:
        if self.debounce_delay < 0:
            raise ValueError(
                f"debounce_delay must not be negative, got {self.debounce_delay}"
            )
