# src/errors.py
"""
Error taxonomy shared by the collectors, the batch jobs and the read path.

  QueryValidationError  malformed / missing query parameter (client error)
  QueryFailedError      storage failure on the read path (generic message)
  SourceFetchError      transient upstream failure, retried per page
  ConfigError           missing credential / bad setting, aborts a run
  DuplicateKeyError     natural-key conflict, counted as a duplicate
"""
from __future__ import annotations


class QueryValidationError(ValueError):
    """Raised for a bad query parameter. The message is shown to the caller."""


class QueryFailedError(RuntimeError):
    def __init__(self, message: str = "query failed") -> None:
        super().__init__(message)


class SourceFetchError(RuntimeError):
    """Upstream fetch failed (timeout, non-2xx, malformed payload). Retryable."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConfigError(RuntimeError):
    """Fatal configuration problem. Aborts the whole ingestion run."""


class DuplicateKeyError(Exception):
    """A row with the same natural key already exists."""

    def __init__(self, source: str, source_id: str) -> None:
        super().__init__(f"duplicate natural key ({source}, {source_id})")
        self.source = source
        self.source_id = source_id
