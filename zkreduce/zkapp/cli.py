#!/usr/bin/env python3
"""
zkreduce CLI

Usage:
    zkreduce <command> [subcommand] [options]

Commands:
    config      Configuration management
    keys        Identity key management
    prove       Compose the three-stage proof chain and write the artifact
    verify      Verify a proof artifact
    reduce      Fold a list of action payloads offline
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

from zkreduce import __version__
from zkreduce.zkapp.hardening import ZkReduceError


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TEXT = "text"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        import yaml
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


_TRUE = {"true", "t", "1", "+", "inc"}
_FALSE = {"false", "f", "0", "-", "dec"}


def parse_payload(token: str, policy_name: str) -> Any:
    """Parse one command-line action payload for `policy_name`."""
    if policy_name == "clamped":
        lowered = token.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise CLIError(f"Clamped actions are true/false, got {token!r}")
    try:
        return int(token, 0)
    except ValueError:
        raise CLIError(f"Additive actions are integers, got {token!r}") from None


class ZkReduceCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="zkreduce",
            description="Action-log rollups and recursive proof composition",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"zkreduce {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=[f.value for f in OutputFormat],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="YAML configuration file (default: zkreduce.yaml search path)",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error messages",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        self._register_config_commands()
        self._register_keys_commands()
        self._register_proof_commands()
        self._register_reduce_command()

    def _register_config_commands(self) -> None:
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        get = config_sub.add_parser("get", help="Get configuration value")
        get.add_argument("path", help="Config path (e.g., reducer.max_actions_per_rollup)")

        set_cmd = config_sub.add_parser("set", help="Set configuration value for this invocation")
        set_cmd.add_argument("path", help="Config path")
        set_cmd.add_argument("value", help="Value to set")

        config_sub.add_parser("show", help="Show all configuration")
        config_sub.add_parser("validate", help="Validate configuration")
        config_sub.add_parser("schema", help="Export configuration schema")

    def _register_keys_commands(self) -> None:
        keys = self.subparsers.add_parser("keys", help="Identity key management")
        keys_sub = keys.add_subparsers(dest="subcommand")

        generate = keys_sub.add_parser("generate", help="Generate an Ed25519 private JWK")
        generate.add_argument("--out", "-o", required=True, help="Output file for the private JWK")
        generate.add_argument("--kid", default="key-1", help="Key id")

    def _register_proof_commands(self) -> None:
        prove = self.subparsers.add_parser("prove", help="Compose the proof chain for a key")
        prove.add_argument("--key", "-k", required=True, help="Private JWK file")
        prove.add_argument("--secret", "-s", type=int, help="Shared secret (default: rewards.secret)")
        prove.add_argument("--value", "-v", type=int, default=8, help="Ownership stage value (default: 8)")
        prove.add_argument("--out", "-o", required=True, help="Output artifact file")

        verify = self.subparsers.add_parser("verify", help="Verify a proof artifact")
        verify.add_argument("artifact", help="Artifact file")

    def _register_reduce_command(self) -> None:
        reduce = self.subparsers.add_parser("reduce", help="Fold action payloads from the initial pointer")
        reduce.add_argument("--policy", "-p", choices=["additive", "clamped"], default="additive")
        reduce.add_argument("values", nargs="*", help="Payloads (integers, or true/false for clamped)")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        try:
            self._load_config(parsed.config)
            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            if isinstance(result, dict) and result.get("valid") is False:
                return 1
            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except (ZkReduceError, ValueError, OSError) as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return 1

    def _load_config(self, path: Optional[str]) -> None:
        from zkreduce.zkapp.config import get_config_manager
        mgr = get_config_manager()
        if path:
            mgr.load_from_file(path)
        else:
            mgr.load_defaults()

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}".strip(), exit_code=2)

        return handler(args)

    # Config handlers
    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        from zkreduce.zkapp.config import get_config_manager
        mgr = get_config_manager()
        return {"path": args.path, "value": mgr.get(args.path)}

    def _handle_config_set(self, args: argparse.Namespace) -> Any:
        from zkreduce.zkapp.config import get_config_manager
        mgr = get_config_manager()
        mgr.set(args.path, args.value)
        return {"path": args.path, "value": mgr.get(args.path), "status": "updated"}

    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        from zkreduce.zkapp.config import get_config_manager
        return get_config_manager().config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        from zkreduce.zkapp.config import get_config_manager
        errors = get_config_manager().validate()
        return {"valid": len(errors) == 0, "errors": errors}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        from zkreduce.zkapp.config import get_config_manager
        return get_config_manager().export_schema()

    # Key handlers
    def _handle_keys_generate(self, args: argparse.Namespace) -> Any:
        from zkreduce.keys import load_ed25519_private_key_from_jwk, generate_ed25519_jwk

        out = Path(args.out)
        if out.exists():
            raise CLIError(f"Refusing to overwrite existing key file: {out}")
        jwk = generate_ed25519_jwk(kid=args.kid)
        _, did = load_ed25519_private_key_from_jwk(jwk)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps(jwk, indent=2) + "\n", encoding="utf-8")
        os.chmod(out, 0o600)
        return {"path": str(out), "kid": args.kid, "public_key": did}

    # Proof handlers
    def _handle_prove(self, args: argparse.Namespace) -> Any:
        from zkreduce.keys import load_private_key_file
        from zkreduce.zkapp.artifacts import dump_artifact
        from zkreduce.zkapp.config import get_config
        from zkreduce.zkapp.recursion import ProofComposer

        private_key, did = load_private_key_file(args.key)
        secret = get_config().rewards.secret.get() if args.secret is None else args.secret
        result = ProofComposer().compose(private_key, secret, args.value)
        path = dump_artifact(result.merged, args.out)
        return {
            "path": str(path),
            "public_key": did,
            "value": result.value,
            "digest": result.merged.digest,
        }

    def _handle_verify(self, args: argparse.Namespace) -> Any:
        from zkreduce.zkapp.artifacts import load_artifact
        from zkreduce.zkapp.recursion import RecursionProgram

        proof = load_artifact(args.artifact)
        return {
            "valid": RecursionProgram().verify(proof),
            "circuit_id": proof.circuit_id,
            "public_key": proof.public_input["public_key"],
            "value": proof.public_input["value"],
            "digest": proof.digest,
        }

    # Reducer handlers
    def _handle_reduce(self, args: argparse.Namespace) -> Any:
        from zkreduce.zkapp.actionlog import ActionLog
        from zkreduce.zkapp.hashchain import INITIAL
        from zkreduce.zkapp.reducer import get_policy, reduce

        policy = get_policy(args.policy)
        payloads = [parse_payload(v, policy.name) for v in args.values]
        log = ActionLog()
        if payloads:
            log.dispatch_many(payloads)
        state = reduce(log.actions_since(INITIAL), policy)
        return {
            "policy": policy.name,
            "actions": len(payloads),
            "state": state,
            "pointer": log.tail,
        }


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    cli = ZkReduceCLI()
    return cli.run(argv)


if __name__ == "__main__":
    sys.exit(main())
