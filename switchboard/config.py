"""Runtime settings for the switchboard relay.

Defaults can be overridden through environment variables, and again through
the command line (see ``switchboard.api.main``).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 5678
# Since last seen. Clients poll every few seconds.
DEFAULT_ADDRESS_TTL_S = 30.0
# Negotiations expire even while both ends are still present.
DEFAULT_NEGOTIATION_TTL_S = 30.0
DEFAULT_MAX_NEGOTIATION_ITEMS = 500
DEFAULT_SWEEP_INTERVAL_S = 60.0

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class RelaySettings:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    address_ttl: float = DEFAULT_ADDRESS_TTL_S
    negotiation_ttl: float = DEFAULT_NEGOTIATION_TTL_S
    max_negotiation_items: int = DEFAULT_MAX_NEGOTIATION_ITEMS
    sweep_interval: float = DEFAULT_SWEEP_INTERVAL_S
    match_negotiations: bool = False
    log_level: str = "info"

    def __post_init__(self) -> None:
        for name in ("address_ttl", "negotiation_ttl", "sweep_interval"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.max_negotiation_items <= 0:
            raise ValueError("max_negotiation_items must be positive")
        if not 0 < self.port < 65536:
            raise ValueError("port must be between 1 and 65535")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RelaySettings":
        raw = env_values(environ)
        return cls(
            host=raw["host"],
            port=int(raw["port"]),
            address_ttl=float(raw["address_ttl"]),
            negotiation_ttl=float(raw["negotiation_ttl"]),
            max_negotiation_items=int(raw["max_negotiation_items"]),
            sweep_interval=float(raw["sweep_interval"]),
            match_negotiations=is_truthy(raw["match_negotiations"]),
            log_level=raw["log_level"],
        )


def env_values(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Return the unparsed setting values found in the environment.

    Nothing is validated here so command-line flags can still override a
    bad value before ``RelaySettings`` checks it.
    """

    env = os.environ if environ is None else environ
    return {
        "host": env.get("SWITCHBOARD_HOST", DEFAULT_HOST),
        "port": env.get("PORT", str(DEFAULT_PORT)),
        "address_ttl": env.get("SWITCHBOARD_ADDRESS_TTL_S", str(DEFAULT_ADDRESS_TTL_S)),
        "negotiation_ttl": env.get("SWITCHBOARD_NEGOTIATION_TTL_S", str(DEFAULT_NEGOTIATION_TTL_S)),
        "max_negotiation_items": env.get(
            "SWITCHBOARD_MAX_NEGOTIATION_ITEMS", str(DEFAULT_MAX_NEGOTIATION_ITEMS)
        ),
        "sweep_interval": env.get("SWITCHBOARD_SWEEP_INTERVAL_S", str(DEFAULT_SWEEP_INTERVAL_S)),
        "match_negotiations": env.get("SWITCHBOARD_MATCH_NEGOTIATIONS", ""),
        "log_level": env.get("SWITCHBOARD_LOG_LEVEL", "info").lower(),
    }


def is_truthy(value: str) -> bool:
    return value.strip().lower() in _TRUTHY


__all__ = ["RelaySettings", "env_values", "is_truthy"]
