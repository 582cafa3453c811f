"""Tests for proof artifact files and their schema."""

import json

import pytest

from zkreduce.zkapp.artifacts import (
    artifact_to_dict,
    artifact_validator,
    dump_artifact,
    load_artifact,
    validate_artifact,
)
from zkreduce.zkapp.hardening import ArtifactFormatError
from zkreduce.zkapp.recursion import ProofComposer


@pytest.fixture
def merged(program, alice_key):
    return ProofComposer(program).compose(alice_key, 1111, 8).merged


class TestSchema:

    def test_schema_is_valid(self):
        assert artifact_validator() is artifact_validator()

    def test_merged_proof_validates(self, merged):
        assert validate_artifact(artifact_to_dict(merged)) == []

    def test_errors_name_the_path(self, merged):
        data = artifact_to_dict(merged)
        data["public_input"]["value"] = -1
        errors = validate_artifact(data)
        assert len(errors) == 1
        assert errors[0].startswith("$.public_input.value")

    def test_unknown_fields_rejected(self, merged):
        data = artifact_to_dict(merged)
        data["private_key"] = "oops"
        assert validate_artifact(data)

    def test_unknown_circuit_rejected(self, merged):
        data = artifact_to_dict(merged)
        data["circuit_id"] = "other.v1"
        assert validate_artifact(data)


class TestFiles:

    def test_dump_and_load(self, tmp_path, merged, program):
        path = dump_artifact(merged, tmp_path / "out" / "merged.json")
        loaded = load_artifact(path)
        assert loaded == merged
        assert loaded.digest == merged.digest
        assert program.verify(loaded)

    def test_file_is_plain_json(self, tmp_path, merged):
        path = dump_artifact(merged, tmp_path / "merged.json")
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["public_input"]["value"] == 512
        assert len(data["certificate"]) == 64

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ArtifactFormatError):
            load_artifact(path)

    def test_schema_violation(self, tmp_path, merged):
        data = artifact_to_dict(merged)
        del data["certificate"]
        path = tmp_path / "partial.json"
        path.write_text(json.dumps(data), encoding="utf-8")
        with pytest.raises(ArtifactFormatError) as exc:
            load_artifact(path)
        assert any("certificate" in e for e in exc.value.errors)
