"""
Tests for template encoding and the template repository.
"""

import json
from dataclasses import replace

import pytest

from heartid_core.constants import TEMPLATE_VERSION
from heartid_core.data_models import SecurityLevel, Template
from heartid_core.exceptions import (
    OpenFailedError,
    SerializationFailedError,
    TemplateNotFoundError,
    UnsupportedTemplateVersionError,
)
from heartid_core.template_codec import TemplateCodec, TemplateMetadata, TemplateRecord

from conftest import START


@pytest.fixture
def metadata():
    return TemplateMetadata(
        identity_id="alice",
        security_level=SecurityLevel.HIGH,
        created_at=START,
        template_id="tpl_test_0001",
    )


@pytest.fixture
def template(sample_vector):
    return Template(
        template_id="tpl_test_0001",
        identity_id="alice",
        created_at=START,
        feature_vector=sample_vector,
        security_level=SecurityLevel.MEDIUM,
    )


class TestTemplateCodec:
    """Test cases for TemplateCodec."""

    @pytest.fixture
    def codec(self):
        return TemplateCodec()

    def test_decode_reproduces_vector_exactly(self, codec, sample_vector, metadata):
        record = codec.encode(sample_vector, metadata)
        decoded = codec.decode(codec.deserialize(codec.serialize(record)))

        assert decoded == sample_vector
        for name, value in sample_vector.as_dict().items():
            assert getattr(decoded, name).hex() == value.hex()

    def test_record_carries_version_and_metadata(self, codec, sample_vector, metadata):
        record = codec.encode(sample_vector, metadata)

        assert record.template_version == TEMPLATE_VERSION
        assert record.identity_id == "alice"
        assert record.security_level == "high"
        assert record.authentication_count == 0
        assert record.last_authenticated_at is None

    def test_serialization_is_canonical(self, codec, sample_vector, metadata):
        record = codec.encode(sample_vector, metadata)
        payload = codec.serialize(record)

        assert payload == codec.serialize(codec.deserialize(payload))
        assert list(json.loads(payload)) == sorted(json.loads(payload))

    def test_decode_template_round_trip(self, codec, template):
        counted = template.record_authentication(START.replace(hour=10))
        decoded = codec.decode_template(codec.deserialize(codec.serialize(codec.encode_template(counted))))

        assert decoded == counted

    def test_unknown_version_rejected(self, codec, sample_vector, metadata):
        record = replace(codec.encode(sample_vector, metadata), template_version=99)

        with pytest.raises(UnsupportedTemplateVersionError):
            codec.decode(record)

    def test_unknown_payload_version_rejected(self, codec, sample_vector, metadata):
        data = codec.encode(sample_vector, metadata).to_dict()
        data["template_version"] = 0

        with pytest.raises(UnsupportedTemplateVersionError):
            codec.deserialize(json.dumps(data).encode())

    def test_migration_upgrades_old_records(self, sample_vector, metadata):
        def from_v0(data):
            data["features"] = data.pop("descriptors")
            data["template_version"] = 1
            return data

        codec = TemplateCodec(migrations={0: from_v0})
        data = codec.encode(sample_vector, metadata).to_dict()
        data["descriptors"] = data.pop("features")
        data["template_version"] = 0

        record = codec.deserialize(json.dumps(data).encode())
        assert codec.decode(record) == sample_vector

    def test_invalid_json_rejected(self, codec):
        with pytest.raises(SerializationFailedError):
            codec.deserialize(b"{not json")

    def test_missing_fields_rejected(self, codec):
        with pytest.raises(SerializationFailedError):
            codec.deserialize(json.dumps({"template_version": TEMPLATE_VERSION}).encode())

    def test_invalid_features_rejected(self, codec, sample_vector, metadata):
        record = codec.encode(sample_vector, metadata)
        broken = TemplateRecord.from_dict({**record.to_dict(), "features": {"mean_hr": -1.0}})

        with pytest.raises(SerializationFailedError):
            codec.decode(broken)

    def test_encode_rejects_non_vector(self, codec, metadata):
        with pytest.raises(SerializationFailedError):
            codec.encode({"mean_hr": 70.0}, metadata)


class TestTemplateRepository:
    """Test cases for TemplateRepository."""

    def test_save_and_load(self, repository, template):
        repository.save(template)

        assert repository.exists("alice")
        assert repository.load("alice") == template

    def test_stored_blob_is_opaque(self, repository, storage, template):
        repository.save(template)
        blob = storage.retrieve("alice")

        assert b"alice" not in blob
        assert b"mean_hr" not in blob

    def test_missing_template(self, repository):
        with pytest.raises(TemplateNotFoundError):
            repository.load("nobody")

    def test_tampered_blob_fails_to_open(self, repository, storage, template):
        repository.save(template)
        blob = bytearray(storage.retrieve("alice"))
        blob[-1] ^= 0x01
        storage.persist("alice", bytes(blob))

        with pytest.raises(OpenFailedError):
            repository.load("alice")

    def test_blob_bound_to_identity(self, repository, storage, template):
        repository.save(template)
        storage.persist("mallory", storage.retrieve("alice"))

        with pytest.raises(OpenFailedError):
            repository.load("mallory")

    def test_save_replaces_previous_template(self, repository, template):
        repository.save(template)
        repository.save(template.record_authentication(START))

        assert repository.load("alice").authentication_count == 1

    def test_delete(self, repository, template):
        repository.save(template)
        repository.delete("alice")

        assert not repository.exists("alice")
