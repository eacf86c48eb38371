"""
Custom exception classes for the HeartID core.

This module defines a hierarchy of custom exceptions so that callers can
distinguish capture-quality problems, template storage and cryptography
failures, and session protocol misuse. Each exception carries a context
mapping and an error code for structured logging.
"""

from typing import Optional, Dict, Any


class HeartIdError(Exception):
    """
    Base exception class for all HeartID core errors.

    Parameters
    ----------
    message : str
        Human-readable error message.
    context : dict, optional
        Additional context information about the error.
    error_code : str, optional
        Unique error code for programmatic handling.
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.message = message
        self.context = context or {}
        self.error_code = error_code
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return a formatted string representation of the error."""
        parts = [self.message]

        if self.error_code:
            parts.append(f"[Error Code: {self.error_code}]")

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"[Context: {context_str}]")

        return " ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the exception to a dictionary for structured logging.

        Returns
        -------
        dict
            Dictionary representation of the exception.
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
        }


class BiometricProcessingError(HeartIdError):
    """
    Exception raised for errors during biometric signal processing.

    This includes quality assessment, feature extraction and similarity
    scoring of heart-rate sample batches.
    """

    def __init__(
        self,
        message: str,
        processing_stage: Optional[str] = None,
        **kwargs,
    ) -> None:
        context = kwargs.get("context", {})
        if processing_stage:
            context["processing_stage"] = processing_stage

        super().__init__(message, context, kwargs.get("error_code"))


class QualityCheckError(BiometricProcessingError):
    """
    Exception raised when a sample batch cannot be quality-assessed.

    A batch that is merely of poor quality is reported through a
    QualityReport, not through this exception.
    """

    def __init__(self, message: str, sample_count: int = 0, **kwargs) -> None:
        context = {"sample_count": sample_count}
        super().__init__(
            message,
            processing_stage="quality_assessment",
            context=context,
            error_code="BIOMETRIC_001",
        )


class FeatureExtractionError(BiometricProcessingError):
    """Exception raised during feature extraction from a sample batch."""

    def __init__(self, message: str, sample_count: int = 0, **kwargs) -> None:
        context = {"sample_count": sample_count}
        super().__init__(
            message,
            processing_stage="feature_extraction",
            context=context,
            error_code="BIOMETRIC_002",
        )


class SimilarityError(BiometricProcessingError):
    """Exception raised for invalid scorer configuration or inputs."""

    def __init__(self, message: str, descriptor: Optional[str] = None, **kwargs) -> None:
        context = {"descriptor": descriptor} if descriptor else {}
        super().__init__(
            message,
            processing_stage="similarity",
            context=context,
            error_code="BIOMETRIC_003",
        )


class TemplateError(HeartIdError):
    """
    Exception raised for errors in template encoding and decoding.

    Parameters
    ----------
    message : str
        Human-readable error message.
    identity_id : str, optional
        Identity whose template was being processed.
    """

    def __init__(
        self, message: str, identity_id: Optional[str] = None, **kwargs
    ) -> None:
        context = kwargs.get("context", {})
        if identity_id:
            context["identity_id"] = identity_id

        super().__init__(message, context, kwargs.get("error_code"))


class SerializationFailedError(TemplateError):
    """Exception raised when a template record cannot be (de)serialized."""

    def __init__(self, message: str, identity_id: Optional[str] = None, **kwargs) -> None:
        super().__init__(message, identity_id=identity_id, error_code="TEMPLATE_001")


class UnsupportedTemplateVersionError(TemplateError):
    """Exception raised for template records with an unknown schema version."""

    def __init__(self, version: Any, identity_id: Optional[str] = None) -> None:
        super().__init__(
            f"Unsupported template version: {version!r}",
            identity_id=identity_id,
            context={"template_version": version},
            error_code="TEMPLATE_002",
        )


class SecureStorageError(HeartIdError):
    """
    Exception raised by the secure-storage and sealing collaborators.

    These errors indicate corruption, tampering or a missing enrollment and
    must never be retried automatically.
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        identity_id: Optional[str] = None,
        **kwargs,
    ) -> None:
        context = kwargs.get("context", {})
        if operation:
            context["storage_operation"] = operation
        if identity_id:
            context["identity_id"] = identity_id

        super().__init__(message, context, kwargs.get("error_code"))


class SealFailedError(SecureStorageError):
    """Exception raised when a template record cannot be sealed."""

    def __init__(self, message: str, identity_id: Optional[str] = None, **kwargs) -> None:
        super().__init__(
            message, operation="seal", identity_id=identity_id, error_code="STORAGE_001"
        )


class OpenFailedError(SecureStorageError):
    """
    Exception raised when a sealed blob fails to open.

    An authentication tag mismatch means the stored template is corrupted or
    has been tampered with.
    """

    def __init__(self, message: str, identity_id: Optional[str] = None, **kwargs) -> None:
        super().__init__(
            message, operation="open", identity_id=identity_id, error_code="STORAGE_002"
        )


class TemplateNotFoundError(SecureStorageError):
    """Exception raised when no sealed template exists for an identity."""

    def __init__(self, identity_id: str) -> None:
        super().__init__(
            f"No template stored for identity {identity_id}",
            operation="retrieve",
            identity_id=identity_id,
            error_code="STORAGE_003",
        )


class StorageError(SecureStorageError):
    """Exception raised when persisting or deleting a sealed blob fails."""

    def __init__(
        self, message: str, operation: str, identity_id: Optional[str] = None, **kwargs
    ) -> None:
        super().__init__(
            message, operation=operation, identity_id=identity_id, error_code="STORAGE_004"
        )


class SessionError(HeartIdError):
    """
    Exception raised for authentication session protocol misuse.

    Parameters
    ----------
    message : str
        Human-readable error message.
    session_id : str, optional
        Identifier of the offending session.
    """

    def __init__(self, message: str, session_id: Optional[str] = None, **kwargs) -> None:
        context = kwargs.get("context", {})
        if session_id:
            context["session_id"] = session_id

        super().__init__(message, context, kwargs.get("error_code"))


class SessionClosedError(SessionError):
    """Exception raised when an attempt is recorded on a terminal session."""

    def __init__(self, session_id: str) -> None:
        super().__init__("session closed", session_id=session_id, error_code="SESSION_001")


class SessionExpiredError(SessionError):
    """Exception raised when an attempt arrives after the session timeout."""

    def __init__(self, session_id: str) -> None:
        super().__init__("session expired", session_id=session_id, error_code="SESSION_002")


class ConcurrentAuthenticationError(SessionError):
    """Exception raised when a second attempt overlaps an in-flight one."""

    def __init__(self, identity_id: str) -> None:
        super().__init__(
            "authentication already in progress",
            context={"identity_id": identity_id},
            error_code="SESSION_003",
        )


class ConfigurationError(HeartIdError):
    """
    Exception raised for configuration-related errors.

    This includes invalid policy values, malformed environment variables
    and inconsistent thresholds.
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[str] = None,
        **kwargs,
    ) -> None:
        context = kwargs.get("context", {})
        if config_key:
            context["config_key"] = config_key
        if config_value:
            context["config_value"] = config_value

        super().__init__(message, context, kwargs.get("error_code", "CONFIG_001"))


class DatasetError(HeartIdError):
    """
    Exception raised for errors loading heart-rate sample files.

    This includes missing files, unsupported formats and unparseable rows.
    """

    def __init__(self, message: str, file_path: Optional[str] = None, **kwargs) -> None:
        context = kwargs.get("context", {})
        if file_path:
            context["file_path"] = file_path

        super().__init__(message, context, kwargs.get("error_code"))


class DatasetNotFoundError(DatasetError):
    """Exception raised when a sample file does not exist."""

    def __init__(self, file_path: str) -> None:
        super().__init__(
            f"Sample file not found: {file_path}",
            file_path=file_path,
            error_code="DATASET_001",
        )


class DatasetCorruptedError(DatasetError):
    """Exception raised when a sample file cannot be parsed."""

    def __init__(self, file_path: str, reason: str) -> None:
        super().__init__(
            f"Sample file is invalid: {reason}",
            file_path=file_path,
            context={"corruption_reason": reason},
            error_code="DATASET_002",
        )
