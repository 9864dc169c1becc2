from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class BusConnected:
    """Transport (re)established; emitted to every subscriber."""


@dataclass(frozen=True, slots=True)
class BusError:
    detail: str = ""
    terminal: bool = False  # e.g. authentication rejected; reconnecting will not help
