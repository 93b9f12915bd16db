import sys

import pytest
from fastapi.testclient import TestClient

# Ensure project root is importable (so `import main` / `import cli` work without installing)
import os as _os
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from ruche.db import InMemoryRegistry  # noqa: E402
from ruche.docker_ops import InMemoryRuntime  # noqa: E402
from ruche.models import NodeRecord  # noqa: E402
from ruche.orchestrator import LifecycleOrchestrator  # noqa: E402
from ruche.runtime import DeletionGuard  # noqa: E402
from ruche.settings import Settings  # noqa: E402


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def settings(tmp_path):
    return Settings(
        db_path=str(tmp_path / "ruche.db"),
        registry_backend="memory",
        container_backend="memory",
        node_image="ethersphere/bee:2.5.0",
        node_password="some-password",
        welcome_msg="Hello, Swarm!",
        full_node=True,
        swap_enable=True,
        reserve_doubling=False,
        nat_addr="1.1.1.1",
        api_port="17xx",
        p2p_port="18xx",
        use_docker_host=False,
        eth_rpc="https://eth.rpc",
        gno_rpc="https://gno.rpc",
        root_path=str(tmp_path / "media"),
        parent_dir_format="swarm_data_xx",
        parent_dir_capacity=4,
        neighborhood_api_url="http://neighborhood.test/suggestion",
    )


@pytest.fixture
def registry():
    return InMemoryRegistry()


@pytest.fixture
def runtime():
    return InMemoryRuntime()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def guard(clock):
    return DeletionGuard(clock=clock)


@pytest.fixture
def orchestrator(settings, registry, runtime, guard):
    return LifecycleOrchestrator(
        settings=settings,
        registry=registry,
        runtime=runtime,
        neighborhood_lookup=lambda: "1111101010",
        guard=guard,
    )


@pytest.fixture
def client(orchestrator):
    from main import create_app

    with TestClient(create_app(orchestrator)) as c:
        yield c


def make_record(node_id: int, data_dir: str = "") -> NodeRecord:
    return NodeRecord(
        id=node_id,
        neighborhood="",
        full_node=False,
        swap_enable=False,
        reserve_doubling=False,
        data_dir=data_dir or f"/tmp/ruche-test/node_{node_id:02d}",
    )


@pytest.fixture
def new_record():
    return make_record
