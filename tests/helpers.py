"""Shared fixtures for engine tests: millisecond-scale timing configs."""

from esper_triggerbox.config.models import (
    AppConfig,
    CommandConfig,
    HandshakeConfig,
    SimulatorConfig,
)


def fast_config(
    max_attempts: int = 100,
    probe_interval_ms: int = 2,
    quiet_interval_ms: int = 2,
    quiet_gap_ms: int = 30,
    response_timeout_ms: int = 200,
    **simulator,
) -> AppConfig:
    """Same protocol, timings scaled down so tests finish quickly."""
    simulator.setdefault("announce_interval_ms", 5)
    return AppConfig(
        handshake=HandshakeConfig(
            max_attempts=max_attempts,
            probe_interval_ms=probe_interval_ms,
            quiet_interval_ms=quiet_interval_ms,
            quiet_gap_ms=quiet_gap_ms,
        ),
        command=CommandConfig(response_timeout_ms=response_timeout_ms),
        simulator=SimulatorConfig(**simulator),
    )
