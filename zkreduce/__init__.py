"""zkreduce

Hash-chained action reduction and recursive proof composition for
zkApp-style committed state.

    zkreduce.canonical   canonical JSON bytes and field encoding
    zkreduce.keys        Ed25519 identities and field-list signatures
    zkreduce.zkapp       action log, rollup reducer, proofs, reward token
"""

__version__ = "0.3.1"
