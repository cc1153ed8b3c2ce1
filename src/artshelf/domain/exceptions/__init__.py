"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, we store message as an attribute so code can inspect it without parsing str(exception).
    # Don't raise this directly - always pick a subclass so callers can catch precisely.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class ValidationError(DomainException):
    """Input validation failed.

    Raised when input data fails validation rules (missing fields,
    invalid formats, out-of-range values).
    """

    pass


class InvalidStateException(DomainException):
    """Raised when an object is in an invalid state for the requested operation.

    Example: starting a second scan on a scanner session that is still batching,
    or an illegal scan state transition.
    """

    pass


class ConfigurationError(DomainException):
    """Application misconfiguration.

    Example:
        raise ConfigurationError("Remote discovery selected but no URL configured")
    """

    pass


class ExternalServiceError(DomainException):
    """External service returned an error or could not be reached."""

    pass


# =============================================================================
# Scan pipeline exceptions
# Hey future me - these map 1:1 onto how the scanner reacts:
#   MetadataParseError / MetadataFileNotFoundError -> skip item, keep going
#   DuplicateIdentifierError                       -> drop later file, record error
#   ArtworkIdMismatchError                         -> skip item, record error
#   DuplicateArtworkInBatchError                   -> skip later item, record error
#   DiscoveryError                                 -> fatal (unless fallback policy)
#   BatchTransactionError / EntityResolutionError  -> drop batch, keep going
#   FatalScanError / ScanCancelledError            -> stop, return partial result
# =============================================================================


class MetadataParseError(ValidationError):
    """A metadata file is malformed or misses required fields.

    All violated rules are collected into ``violations`` (not just the first one)
    so a single log line tells you everything that is wrong with the file.
    """

    def __init__(
        self,
        violations: list[str],
        path: str | None = None,
    ) -> None:
        super().__init__("; ".join(violations) if violations else "Invalid metadata")
        self.violations = violations
        self.path = path


class MetadataFileNotFoundError(MetadataParseError):
    """The metadata file vanished between discovery and parsing.

    This is a benign race on long scans (files moved/deleted mid-run), so the
    scanner logs it at a lower level than real parse failures.
    """

    def __init__(self, path: str) -> None:
        super().__init__([f"File not found: {path}"], path=path)


class DuplicateIdentifierError(DomainException):
    """Two discovered files map to the same artwork external id."""

    def __init__(self, external_id: str, first_path: str, duplicate_path: str) -> None:
        super().__init__(
            f"Duplicate artwork id found: {external_id}\n {first_path}\n {duplicate_path}"
        )
        self.external_id = external_id
        self.first_path = first_path
        self.duplicate_path = duplicate_path


class ArtworkIdMismatchError(ValidationError):
    """A metadata file's ID field disagrees with the id in its file name.

    Discovery skips and dedupes by the file name id while rows are keyed by the ID field,
    so such a file could attach its media to a different, already stored artwork.
    """

    def __init__(self, path: str, file_id: str, metadata_id: str) -> None:
        super().__init__(
            f"Artwork id mismatch in {path}: metadata ID {metadata_id} "
            f"does not match file name id {file_id}"
        )
        self.path = path
        self.file_id = file_id
        self.metadata_id = metadata_id


class DuplicateArtworkInBatchError(DomainException):
    """Two items of one batch carry the same metadata ID."""

    def __init__(self, external_id: str, kept_path: str, dropped_path: str) -> None:
        super().__init__(
            f"Artwork id {external_id} appears twice in one batch, kept {kept_path}, "
            f"skipped {dropped_path}"
        )
        self.external_id = external_id
        self.kept_path = kept_path
        self.dropped_path = dropped_path


class DiscoveryError(ExternalServiceError):
    """Remote discovery failed after exhausting all retries."""

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        last_error: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class EntityResolutionError(DomainException):
    """Artists or tags are still missing after the insert round of a batch."""

    def __init__(self, entity_type: str, missing: list[str]) -> None:
        preview = ", ".join(missing[:10])
        super().__init__(
            f"Failed to resolve {len(missing)} {entity_type}(s) after insert: {preview}"
        )
        self.entity_type = entity_type
        self.missing = missing


class BatchTransactionError(DomainException):
    """A batch's bulk-write transaction failed and was rolled back."""

    def __init__(self, batch_number: int, cause: BaseException) -> None:
        super().__init__(f"Failed to process batch {batch_number}: {cause}")
        self.batch_number = batch_number
        self.cause = cause


class ScanCancelledError(DomainException):
    """The caller cancelled a running scan."""

    def __init__(self, message: str = "Scan cancelled") -> None:
        super().__init__(message)


class FatalScanError(DomainException):
    """Unexpected failure outside the per-item and per-batch guards."""

    pass


__all__ = [
    # Base
    "DomainException",
    "ValidationError",
    "InvalidStateException",
    "ConfigurationError",
    "ExternalServiceError",
    # Scan pipeline
    "MetadataParseError",
    "MetadataFileNotFoundError",
    "ArtworkIdMismatchError",
    "DuplicateArtworkInBatchError",
    "DuplicateIdentifierError",
    "DiscoveryError",
    "EntityResolutionError",
    "BatchTransactionError",
    "ScanCancelledError",
    "FatalScanError",
]
