"""
CLI tests.

Every command is driven through `main([...])` the way the console script
calls it; output is parsed back from stdout.
"""

import json

import pytest
import yaml

from zkreduce import __version__
from zkreduce.zkapp.cli import CLIError, format_output, main, parse_payload, OutputFormat


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    """No zkreduce.yaml from the working tree or home directory leaks in."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    return tmp_path


def run_json(capsys, *argv):
    code = main(list(argv))
    out = capsys.readouterr().out
    return code, (json.loads(out) if out.strip() else None)


@pytest.fixture
def key_file(tmp_path, capsys):
    path = tmp_path / "keys" / "alice.jwk.json"
    code, _ = run_json(capsys, "keys", "generate", "--out", str(path))
    assert code == 0
    return path


class TestHelpers:

    def test_parse_additive(self):
        assert parse_payload("2", "additive") == 2
        assert parse_payload("0x10", "additive") == 16
        with pytest.raises(CLIError):
            parse_payload("true", "additive")

    def test_parse_clamped(self):
        assert parse_payload("inc", "clamped") is True
        assert parse_payload("F", "clamped") is False
        with pytest.raises(CLIError):
            parse_payload("2", "clamped")

    def test_format_text(self):
        assert format_output({"a": 1, "b": 2}, OutputFormat.TEXT) == "a: 1\nb: 2"


class TestGeneral:

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "usage" in capsys.readouterr().out.lower()

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["--version"])
        assert exc.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_yaml_output(self, capsys):
        assert main(["--format", "yaml", "reduce", "1", "2"]) == 0
        assert yaml.safe_load(capsys.readouterr().out)["state"] == 3


class TestConfigCommands:

    def test_get(self, capsys):
        code, out = run_json(capsys, "config", "get", "zk.value_multiplier")
        assert code == 0
        assert out == {"path": "zk.value_multiplier", "value": 8}

    def test_set(self, capsys):
        code, out = run_json(capsys, "config", "set", "reducer.retry_attempts", "7")
        assert code == 0
        assert out["value"] == 7

    def test_invalid_path(self, capsys):
        assert main(["config", "get", "zk.missing"]) == 1
        assert "Invalid config path" in capsys.readouterr().err

    def test_show_redacts_secrets(self, capsys):
        code, out = run_json(capsys, "config", "show")
        assert code == 0
        assert out["rewards"]["secret"] == "***"

    def test_validate(self, capsys):
        code, out = run_json(capsys, "config", "validate")
        assert code == 0
        assert out == {"valid": True, "errors": []}

    def test_schema(self, capsys):
        code, out = run_json(capsys, "config", "schema")
        assert code == 0
        assert out["properties"]["rewards"]["mint_amount"]["env_var"] == "ZKREDUCE_MINT_AMOUNT"

    def test_config_file_flag(self, capsys, isolated):
        path = isolated / "custom.yaml"
        path.write_text("zk:\n  value_multiplier: 4\n", encoding="utf-8")
        code, out = run_json(capsys, "--config", str(path), "config", "get", "zk.value_multiplier")
        assert code == 0
        assert out["value"] == 4

    def test_project_file_picked_up(self, capsys, isolated):
        (isolated / "zkreduce.yaml").write_text("reducer:\n  retry_attempts: 9\n", encoding="utf-8")
        _, out = run_json(capsys, "config", "get", "reducer.retry_attempts")
        assert out["value"] == 9

    def test_missing_config_file(self, capsys, isolated):
        assert main(["--config", str(isolated / "nope.yaml"), "config", "show"]) == 1


class TestKeysCommands:

    def test_generate(self, capsys, tmp_path):
        path = tmp_path / "k.json"
        code, out = run_json(capsys, "keys", "generate", "--out", str(path), "--kid", "main")
        assert code == 0
        assert out["public_key"].startswith("did:key:z")
        assert json.loads(path.read_text(encoding="utf-8"))["kid"] == "main"
        assert path.stat().st_mode & 0o777 == 0o600

    def test_refuses_overwrite(self, capsys, key_file):
        before = key_file.read_text(encoding="utf-8")
        assert main(["keys", "generate", "--out", str(key_file)]) == 1
        assert "Refusing to overwrite" in capsys.readouterr().err
        assert key_file.read_text(encoding="utf-8") == before


class TestProofCommands:

    def test_prove_then_verify(self, capsys, key_file, tmp_path):
        artifact = tmp_path / "merged.json"
        code, proved = run_json(capsys, "prove", "--key", str(key_file), "--out", str(artifact))
        assert code == 0
        assert proved["value"] == 512

        code, verified = run_json(capsys, "verify", str(artifact))
        assert code == 0
        assert verified["valid"] is True
        assert verified["public_key"] == proved["public_key"]
        assert verified["digest"] == proved["digest"]

    def test_tampered_artifact_is_invalid(self, capsys, key_file, tmp_path):
        artifact = tmp_path / "merged.json"
        assert main(["prove", "--key", str(key_file), "--out", str(artifact)]) == 0
        capsys.readouterr()

        data = json.loads(artifact.read_text(encoding="utf-8"))
        data["public_input"]["value"] = 1024
        artifact.write_text(json.dumps(data), encoding="utf-8")

        code, verified = run_json(capsys, "verify", str(artifact))
        assert code == 1
        assert verified["valid"] is False

    def test_malformed_artifact(self, capsys, tmp_path):
        artifact = tmp_path / "junk.json"
        artifact.write_text('{"artifact_version": 2}', encoding="utf-8")
        assert main(["verify", str(artifact)]) == 1
        assert "Invalid proof artifact" in capsys.readouterr().err

    def test_prove_custom_value(self, capsys, key_file, tmp_path):
        code, out = run_json(
            capsys, "prove", "--key", str(key_file), "--value", "2", "--out", str(tmp_path / "p.json"),
        )
        assert code == 0
        assert out["value"] == 32

    def test_prove_overflow(self, capsys, key_file, tmp_path):
        assert main(["-q", "prove", "--key", str(key_file), "--value", str(2**40),
                     "--out", str(tmp_path / "p.json")]) == 1
        assert "Error:" not in capsys.readouterr().err


class TestReduceCommand:

    def test_additive(self, capsys):
        code, out = run_json(capsys, "reduce", "1", "1", "2")
        assert code == 0
        assert out["state"] == 4
        assert out["actions"] == 3

    def test_clamped(self, capsys):
        code, out = run_json(capsys, "reduce", "--policy", "clamped", "dec", "dec", "inc")
        assert code == 0
        assert out["state"] == 1

    def test_empty(self, capsys):
        _, out = run_json(capsys, "reduce")
        assert out["state"] == 0
        assert out["actions"] == 0

    def test_pointer_depends_on_order(self, capsys):
        _, forward = run_json(capsys, "reduce", "1", "2")
        _, backward = run_json(capsys, "reduce", "2", "1")
        assert forward["state"] == backward["state"]
        assert forward["pointer"] != backward["pointer"]

    def test_bad_payload(self, capsys):
        assert main(["reduce", "--policy", "clamped", "maybe"]) == 1
        assert "Clamped actions" in capsys.readouterr().err
