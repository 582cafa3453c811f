"""
zkApp layer: committed state reconciled through an action log, and a
reward gated by a recursively composed proof.

Architecture
────────────

    CONTRACTS
      contract.py     Main zkApp: num updates, token hooks, dispatch/rollup
      reward.py       RewardToken: proof-gated and secret-gated mints

    PROOFS
      recursion.py    verify_key -> verify_sig -> merge_proofs
      zkp.py          circuits, registry, commitment and dummy backends
      artifacts.py    JSON-schema validated proof files

    STATE
      hashchain.py    chain pointers over action payloads
      actionlog.py    append-only, pointer-indexed action log
      reducer.py      additive and clamped rollups with optimistic commit
      ledger.py       account fields, transactions, token balances, network

    AMBIENT
      hardening.py    error taxonomy and invariant checks
      config.py       YAML + environment configuration
      observability.py structured logging, tracing, audit trail
      events.py       event bus and per-contract event store
      cli.py          `zkreduce` command line

Invariants
──────────

    A committed checkpoint (counter, actions_hash) always satisfies
    counter == fold(actions up to actions_hash). Both fields advance in one
    commit or not at all.

    Actions are folded strictly in log order.

    A transition that fails a check leaves no trace in committed state.
"""


def __getattr__(name):
    """Lazy import zkApp modules on first access."""

    if name in ("INITIAL", "Action", "advance", "replay", "hash_fields"):
        from zkreduce.zkapp import hashchain
        return getattr(hashchain, name)

    if name in ("ActionLog", "ActionSequence"):
        from zkreduce.zkapp import actionlog
        return getattr(actionlog, name)

    if name in ("Checkpoint", "RollupReducer", "ReductionPolicy", "ADDITIVE", "CLAMPED",
                "get_policy", "reduce", "fold_payloads"):
        from zkreduce.zkapp import reducer
        return getattr(reducer, name)

    if name in ("AccountState", "Transaction", "TokenLedger", "TokenOp", "Network"):
        from zkreduce.zkapp import ledger
        return getattr(ledger, name)

    if name in ("Circuit", "CircuitRegistry", "CommitmentBackend", "DummyBackend",
                "Proof", "ProofSystem", "Witness", "create_backend"):
        from zkreduce.zkapp import zkp
        return getattr(zkp, name)

    if name in ("ProgramInput", "RecursionProgram", "ProofComposer", "CompositionResult"):
        from zkreduce.zkapp import recursion
        return getattr(recursion, name)

    if name in ("artifact_to_dict", "artifact_from_dict", "dump_artifact", "load_artifact"):
        from zkreduce.zkapp import artifacts
        return getattr(artifacts, name)

    if name == "RewardToken":
        from zkreduce.zkapp.reward import RewardToken
        return RewardToken

    if name == "MainContract":
        from zkreduce.zkapp.contract import MainContract
        return MainContract

    if name in ("ZkReduceError", "StaleCheckpointError", "UnknownPointerError",
                "ProofVerificationError", "SignatureMismatchError",
                "UnauthorizedTransitionError", "ConstraintViolation",
                "InvariantViolation", "ArtifactFormatError"):
        from zkreduce.zkapp import hardening
        return getattr(hardening, name)

    raise AttributeError(f"module 'zkreduce.zkapp' has no attribute '{name}'")
