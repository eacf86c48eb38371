"""
Template encoding and storage for the HeartID core.

This module turns a feature vector plus enrollment metadata into an
explicit, versioned template record, serializes it to canonical JSON, and
stores it through the secure-storage collaborators. The codec performs no
cryptography itself: sealing is delegated to a ``SealingService`` and the
sealed blob is opaque to this module.

Feature descriptors are written as JSON numbers using Python's shortest
round-trip float representation, so decoding reproduces them bit-for-bit.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional

import structlog

from .constants import TEMPLATE_VERSION
from .data_models import FeatureVector, SecurityLevel, Template
from .exceptions import (
    OpenFailedError,
    SerializationFailedError,
    UnsupportedTemplateVersionError,
)
from .secure_storage import SealingService, SecureStorage

# Initialize structured logger
logger = structlog.get_logger(__name__)

# Upgrades a record dict from the keyed version to the next one
RecordMigration = Callable[[Dict[str, Any]], Dict[str, Any]]


@dataclass(frozen=True)
class TemplateMetadata:
    """
    Enrollment metadata stored alongside a feature vector.

    Parameters
    ----------
    identity_id : str
        Owner of the template.
    security_level : SecurityLevel
        Policy applied when authenticating against the template.
    created_at : datetime
        Enrollment timestamp.
    template_id : str, optional
        Unique identifier; generated when omitted.
    last_authenticated_at : Optional[datetime], default=None
        Last approved authentication.
    authentication_count : int, default=0
        Number of approved authentications.
    """

    identity_id: str
    security_level: SecurityLevel
    created_at: datetime
    template_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    last_authenticated_at: Optional[datetime] = None
    authentication_count: int = 0

    @classmethod
    def from_template(cls, template: Template) -> "TemplateMetadata":
        return cls(
            identity_id=template.identity_id,
            security_level=template.security_level,
            created_at=template.created_at,
            template_id=template.template_id,
            last_authenticated_at=template.last_authenticated_at,
            authentication_count=template.authentication_count,
        )


@dataclass(frozen=True)
class TemplateRecord:
    """
    Plaintext structured form of a stored template.

    Parameters
    ----------
    template_version : int
        Schema version of the record.
    template_id, identity_id : str
        Identifiers.
    created_at : str
        ISO-8601 enrollment timestamp.
    security_level : str
        SecurityLevel value.
    authentication_count : int
        Approved authentications so far.
    last_authenticated_at : Optional[str]
        ISO-8601 timestamp of the last approval.
    features : Mapping[str, float]
        Feature descriptors keyed by name.
    """

    template_version: int
    template_id: str
    identity_id: str
    created_at: str
    security_level: str
    authentication_count: int
    last_authenticated_at: Optional[str]
    features: Mapping[str, float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template_version": self.template_version,
            "template_id": self.template_id,
            "identity_id": self.identity_id,
            "created_at": self.created_at,
            "security_level": self.security_level,
            "authentication_count": self.authentication_count,
            "last_authenticated_at": self.last_authenticated_at,
            "features": dict(self.features),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TemplateRecord":
        return cls(
            template_version=data["template_version"],
            template_id=data["template_id"],
            identity_id=data["identity_id"],
            created_at=data["created_at"],
            security_level=data["security_level"],
            authentication_count=data["authentication_count"],
            last_authenticated_at=data.get("last_authenticated_at"),
            features=dict(data["features"]),
        )


class TemplateCodec:
    """
    Encoder/decoder between feature vectors and versioned template records.

    Parameters
    ----------
    migrations : Dict[int, RecordMigration], optional
        Upgrade steps keyed by the version they upgrade from. A record is
        stepped through the table until it reaches TEMPLATE_VERSION; any
        version without a step is rejected.

    Examples
    --------
    >>> codec = TemplateCodec()
    >>> record = codec.encode(vector, metadata)
    >>> codec.decode(record) == vector
    True
    """

    def __init__(self, migrations: Optional[Dict[int, RecordMigration]] = None) -> None:
        self.migrations = dict(migrations or {})

    def encode(self, vector: FeatureVector, metadata: TemplateMetadata) -> TemplateRecord:
        """
        Encode a feature vector and its metadata into a template record.

        Raises
        ------
        SerializationFailedError
            If the vector or metadata is invalid.
        """
        if not isinstance(vector, FeatureVector):
            raise SerializationFailedError(
                f"Expected FeatureVector, got {type(vector).__name__}",
                identity_id=getattr(metadata, "identity_id", None),
            )

        return TemplateRecord(
            template_version=TEMPLATE_VERSION,
            template_id=metadata.template_id,
            identity_id=metadata.identity_id,
            created_at=metadata.created_at.isoformat(),
            security_level=SecurityLevel(metadata.security_level).value,
            authentication_count=metadata.authentication_count,
            last_authenticated_at=(
                metadata.last_authenticated_at.isoformat()
                if metadata.last_authenticated_at
                else None
            ),
            features=vector.as_dict(),
        )

    def encode_template(self, template: Template) -> TemplateRecord:
        return self.encode(template.feature_vector, TemplateMetadata.from_template(template))

    def decode(self, record: TemplateRecord) -> FeatureVector:
        """
        Decode the feature vector of a template record.

        Raises
        ------
        UnsupportedTemplateVersionError
            If the record version is not current.
        SerializationFailedError
            If the descriptors do not form a valid feature vector.
        """
        if record.template_version != TEMPLATE_VERSION:
            raise UnsupportedTemplateVersionError(
                record.template_version, identity_id=record.identity_id
            )
        try:
            return FeatureVector.from_dict(record.features)
        except (TypeError, ValueError) as e:
            raise SerializationFailedError(
                f"Template record holds an invalid feature vector: {e}",
                identity_id=record.identity_id,
            )

    def decode_template(self, record: TemplateRecord) -> Template:
        """Decode a complete Template from a record."""
        vector = self.decode(record)
        try:
            return Template(
                template_id=record.template_id,
                identity_id=record.identity_id,
                created_at=datetime.fromisoformat(record.created_at),
                feature_vector=vector,
                security_level=SecurityLevel(record.security_level),
                last_authenticated_at=(
                    datetime.fromisoformat(record.last_authenticated_at)
                    if record.last_authenticated_at
                    else None
                ),
                authentication_count=record.authentication_count,
            )
        except (TypeError, ValueError) as e:
            raise SerializationFailedError(
                f"Template record metadata is invalid: {e}",
                identity_id=record.identity_id,
            )

    def serialize(self, record: TemplateRecord) -> bytes:
        """Canonical JSON bytes of a record."""
        try:
            return json.dumps(
                record.to_dict(), sort_keys=True, separators=(",", ":"), allow_nan=False
            ).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise SerializationFailedError(
                f"Failed to serialize template record: {e}", identity_id=record.identity_id
            )

    def deserialize(self, payload: bytes) -> TemplateRecord:
        """
        Parse JSON bytes into a current-version record, applying migrations.

        Raises
        ------
        SerializationFailedError
            If the payload is not a well-formed record.
        UnsupportedTemplateVersionError
            If no migration path reaches the current version.
        """
        try:
            data = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise SerializationFailedError(f"Template payload is not valid JSON: {e}")
        if not isinstance(data, dict) or "template_version" not in data:
            raise SerializationFailedError("Template payload is not a template record")

        data = self._migrate(data)

        try:
            return TemplateRecord.from_dict(data)
        except (KeyError, TypeError) as e:
            raise SerializationFailedError(
                f"Template record is missing fields: {e}",
                identity_id=data.get("identity_id"),
            )

    def _migrate(self, data: Dict[str, Any]) -> Dict[str, Any]:
        version = data.get("template_version")
        seen = set()
        while version != TEMPLATE_VERSION:
            step = self.migrations.get(version)
            if step is None or version in seen:
                raise UnsupportedTemplateVersionError(
                    version, identity_id=data.get("identity_id")
                )
            seen.add(version)
            data = step(dict(data))
            logger.info(
                "Template record migrated",
                from_version=version,
                to_version=data.get("template_version"),
            )
            version = data.get("template_version")
        return data


class TemplateRepository:
    """
    Seals and stores templates through the external collaborators.

    The identity is bound to each sealed blob as associated data, so a blob
    copied to another identity fails to open.

    Parameters
    ----------
    storage : SecureStorage
        Persistence capability.
    sealer : SealingService
        Authenticated-encryption capability.
    codec : TemplateCodec, optional
        Record codec.
    """

    def __init__(
        self,
        storage: SecureStorage,
        sealer: SealingService,
        codec: Optional[TemplateCodec] = None,
    ) -> None:
        self.storage = storage
        self.sealer = sealer
        self.codec = codec or TemplateCodec()

    @staticmethod
    def _associated_data(identity_id: str) -> bytes:
        return identity_id.encode("utf-8")

    def save(self, template: Template) -> None:
        """
        Seal and persist a template, fully replacing any previous one.

        Raises
        ------
        SerializationFailedError, SealFailedError, StorageError
            Nothing is persisted when any step fails.
        """
        record = self.codec.encode_template(template)
        payload = self.codec.serialize(record)
        blob = self.sealer.seal(payload, self._associated_data(template.identity_id))
        self.storage.persist(template.identity_id, blob)

        logger.info(
            "Template stored",
            identity_id=template.identity_id,
            template_id=template.template_id,
            authentication_count=template.authentication_count,
        )

    def load(self, identity_id: str) -> Template:
        """
        Retrieve, open and decode the template of an identity.

        Raises
        ------
        TemplateNotFoundError
            If the identity is not enrolled.
        OpenFailedError
            If the sealed blob is corrupted or tampered.
        SerializationFailedError, UnsupportedTemplateVersionError
            If the opened record cannot be decoded.
        """
        blob = self.storage.retrieve(identity_id)
        payload = self.sealer.open(blob, self._associated_data(identity_id))
        record = self.codec.deserialize(payload)

        if record.identity_id != identity_id:
            raise OpenFailedError(
                "Template record belongs to a different identity", identity_id=identity_id
            )

        return self.codec.decode_template(record)

    def exists(self, identity_id: str) -> bool:
        return self.storage.exists(identity_id)

    def delete(self, identity_id: str) -> None:
        self.storage.delete(identity_id)
        logger.info("Template deleted", identity_id=identity_id)
