"""Failure taxonomy. Every outcome the caller may need to render has a Reason."""

from __future__ import annotations

from enum import Enum


class Reason(str, Enum):
    DUPLICATE = "duplicate"
    STORE_FAILURE = "store_failure"
    IMPORT_MALFORMED = "import_malformed"
    CLASSIFICATION_FALLBACK = "classification_fallback"
    EMBEDDING_FALLBACK = "embedding_fallback"
    EMPTY_INPUT = "empty_input"
    NOT_FOUND = "not_found"


class OrbitError(Exception):
    """Base error. Carries the Reason the caller should surface."""

    reason: Reason = Reason.STORE_FAILURE

    def __init__(self, message: str = "", reason: Reason | None = None):
        if reason is not None:
            self.reason = reason
        super().__init__(message or self.reason.value)


class StoreError(OrbitError):
    """The record store could not read or write."""

    reason = Reason.STORE_FAILURE


class ImportFormatError(OrbitError):
    """An import document could not be interpreted. Nothing was written."""

    reason = Reason.IMPORT_MALFORMED


class DuplicateThoughtError(OrbitError):
    """A candidate record was requested from a duplicate pipeline result."""

    reason = Reason.DUPLICATE
