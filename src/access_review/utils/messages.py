"""Aggregated, de-duplicated user-facing messages."""

from __future__ import annotations


class MessageAccumulator:
    """Collects errors and warnings once each, in first-seen order."""

    def __init__(self) -> None:
        self._errors: list[str] = []
        self._warnings: list[str] = []

    def add_error(self, message: str) -> None:
        if message not in self._errors:
            self._errors.append(message)

    def add_warning(self, message: str) -> None:
        if message not in self._warnings:
            self._warnings.append(message)

    @property
    def errors(self) -> list[str]:
        return list(self._errors)

    @property
    def warnings(self) -> list[str]:
        return list(self._warnings)

    def has_errors(self) -> bool:
        return bool(self._errors)
