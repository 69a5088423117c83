#!/usr/bin/env python3
"""Error taxonomy shared by the reconciliation stages."""
from __future__ import annotations

from typing import Iterable


class SyncError(Exception):
    """Base class for every reconciliation failure."""


class ParseError(SyncError):
    """A document is not well-formed YAML (or has no mapping at its root)."""

    def __init__(self, source: str, detail: str):
        self.source = source
        self.detail = detail
        super().__init__(f"cannot parse {source}: {detail}")


class NotFoundError(SyncError):
    """A document, section or entity does not exist."""


class EntityNotFound(NotFoundError):
    def __init__(self, name: str, where: str):
        self.name = name
        self.where = where
        super().__init__(f"{name} not found in {where}")


class PatternMismatch(SyncError):
    """The text no longer follows the indentation convention an edit relies on."""

    def __init__(self, name: str, detail: str):
        self.name = name
        self.detail = detail
        super().__init__(f"{name}: {detail}")


class UnresolvedReferenceError(SyncError):
    def __init__(self, unresolved: Iterable[str]):
        self.unresolved = sorted(set(unresolved))
        super().__init__(
            f"{len(self.unresolved)} external reference(s) have no internal component: "
            + ", ".join(self.unresolved)
        )


class ValidationError(SyncError):
    def __init__(self, violations: Iterable[str]):
        self.violations = list(violations)
        super().__init__(f"{len(self.violations)} validation issue(s) found")
