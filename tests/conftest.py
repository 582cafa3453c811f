import os
import pathlib
import sys
import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import zkreduce`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from zkreduce.keys import derive_public_key, generate_private_key  # noqa: E402
from zkreduce.zkapp.config import get_config_manager  # noqa: E402


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests (skipped unless ZKREDUCE_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_slow = _env_flag('ZKREDUCE_RUN_SLOW')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set ZKREDUCE_RUN_SLOW=1 to enable'))


@pytest.fixture(autouse=True)
def fresh_config():
    """Every test starts from default configuration."""
    mgr = get_config_manager()
    mgr.reset()
    yield mgr
    mgr.reset()


@pytest.fixture
def backend():
    from zkreduce.zkapp.zkp import CommitmentBackend
    return CommitmentBackend(b"test-backend-secret")


@pytest.fixture
def program(backend):
    from zkreduce.zkapp.recursion import RecursionProgram
    return RecursionProgram(backend, multiplier=8)


@pytest.fixture
def alice_key():
    return generate_private_key()


@pytest.fixture
def alice(alice_key):
    return derive_public_key(alice_key)


@pytest.fixture
def bob_key():
    return generate_private_key()


@pytest.fixture
def bob(bob_key):
    return derive_public_key(bob_key)


@pytest.fixture
def network():
    from zkreduce.zkapp.ledger import Network
    return Network(block_height=100)
