"""Owner lookup results."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class OwnerFound:
    name: str


@dataclass(frozen=True)
class NoOwnerFound:
    reason: str


OwnerResolution = Union[OwnerFound, NoOwnerFound]
