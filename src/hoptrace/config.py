"""
Configuration management for HopTrace.

Loads trace defaults from environment variables or a .env file.
"""

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from netaddr import AddrFormatError, IPAddress

# Check common locations for .env
env_locations = [
    Path.home() / ".hoptrace" / ".env",
    Path.home() / ".config" / "hoptrace" / ".env",
    Path.cwd() / ".env",
]
for env_path in env_locations:
    if env_path.exists():
        load_dotenv(env_path)
        break

# Embedded sequence number (2 bytes) + send timestamp (4 bytes)
MIN_PROBE_SIZE = 6

# Largest ICMP payload that fits in a single IPv4 datagram
MAX_PROBE_SIZE = 65507

MAX_HOP_LIMIT = 255


class ConfigError(ValueError):
    """Invalid trace configuration."""
    pass


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class TraceConfig:
    """Settings for a single trace run."""

    destination: str = ""

    # Bytes of ICMP data per probe (header + padding)
    probe_size: int = 56

    # Seconds to wait after a reply or timeout before the next probe
    interval: float = 0.0

    max_probes_per_hop: int = 3
    max_hop_limit: int = 30

    # Seconds until an unanswered probe is considered lost
    wait_reply_timeout: float = 5.0

    # Emit report lines as each hop resolves
    verbose: bool = True

    @classmethod
    def from_env(cls) -> "TraceConfig":
        """Load configuration from environment variables."""
        return cls(
            destination=os.getenv("HOPTRACE_DESTINATION", ""),
            probe_size=int(os.getenv("HOPTRACE_PROBE_SIZE", "56")),
            interval=float(os.getenv("HOPTRACE_INTERVAL", "0")),
            max_probes_per_hop=int(os.getenv("HOPTRACE_PROBES_PER_HOP", "3")),
            max_hop_limit=int(os.getenv("HOPTRACE_MAX_HOPS", "30")),
            wait_reply_timeout=float(os.getenv("HOPTRACE_TIMEOUT", "5.0")),
            verbose=_env_bool(os.getenv("HOPTRACE_VERBOSE"), True),
        )

    @property
    def destination_is_address(self) -> bool:
        """True when destination is a literal IPv4 address."""
        try:
            return IPAddress(self.destination).version == 4
        except (AddrFormatError, ValueError, TypeError):
            return False

    def with_overrides(self, **overrides: Any) -> "TraceConfig":
        """Return a copy with every non-None override applied."""
        names = {f.name for f in fields(self)}
        unknown = set(overrides) - names
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def validate(self) -> "TraceConfig":
        """Check value ranges, raising ConfigError on the first problem."""
        if not self.destination:
            raise ConfigError("destination is required")
        if not MIN_PROBE_SIZE <= self.probe_size <= MAX_PROBE_SIZE:
            raise ConfigError(
                f"probe_size must be between {MIN_PROBE_SIZE} and {MAX_PROBE_SIZE}, got {self.probe_size}"
            )
        if not 1 <= self.max_probes_per_hop <= 255:
            raise ConfigError(f"max_probes_per_hop must be between 1 and 255, got {self.max_probes_per_hop}")
        if not 1 <= self.max_hop_limit <= MAX_HOP_LIMIT:
            raise ConfigError(
                f"max_hop_limit must be between 1 and {MAX_HOP_LIMIT}, got {self.max_hop_limit}"
            )
        if self.wait_reply_timeout <= 0:
            raise ConfigError(f"wait_reply_timeout must be positive, got {self.wait_reply_timeout}")
        if self.interval < 0:
            raise ConfigError(f"interval must not be negative, got {self.interval}")
        return self


# Global config instance
_config: TraceConfig | None = None


def get_config() -> TraceConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = TraceConfig.from_env()
    return _config


def set_config(config: TraceConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
