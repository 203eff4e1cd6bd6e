"""
Job lifecycle configuration (sweeps, retention, scoping).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .base import ScopeType


@dataclass
class JobsConfig:
    """Configuration for job lifecycle maintenance.

    ``scope_overrides`` maps a job kind value (e.g. ``"cover_image"``) to the
    key used for the one-active-job rule: ``"owner"`` or ``"subject"``.
    """

    # Sweeps
    stuck_threshold_seconds: float = 6 * 60
    retention_seconds: float = 24 * 60 * 60
    stuck_sweep_interval_seconds: float = 5 * 60
    cleanup_sweep_interval_seconds: float = 24 * 60 * 60
    sweep_batch_size: int = 100

    # Per-kind supersession scope
    scope_overrides: dict[str, ScopeType] = field(default_factory=dict)

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.stuck_threshold_seconds <= 0:
            raise ValueError("stuck_threshold_seconds must be positive")
        if self.retention_seconds <= 0:
            raise ValueError("retention_seconds must be positive")
        if self.stuck_sweep_interval_seconds <= 0:
            raise ValueError("stuck_sweep_interval_seconds must be positive")
        if self.cleanup_sweep_interval_seconds <= 0:
            raise ValueError("cleanup_sweep_interval_seconds must be positive")
        if self.sweep_batch_size <= 0:
            raise ValueError("sweep_batch_size must be positive")
        for kind, scope in self.scope_overrides.items():
            if scope not in ("owner", "subject"):
                raise ValueError(f"Invalid scope for {kind}: {scope}")


__all__ = ["JobsConfig"]
