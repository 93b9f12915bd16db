from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_NEIGHBORHOOD_API_URL = "https://api.swarmscan.io/v1/network/neighborhoods/suggestion"


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("RUCHE_DB_PATH", "ruche.db")
    registry_backend: str = os.getenv("RUCHE_REGISTRY_BACKEND", "sqlite")  # sqlite|memory
    container_backend: str = os.getenv("RUCHE_CONTAINER_BACKEND", "docker")  # docker|memory
    provision_timeout_s: int = _env_int("RUCHE_PROVISION_TIMEOUT_S", 15)

    # Node
    node_image: str = os.getenv("RUCHE_NODE_IMAGE", "ethersphere/bee:2.5.0")
    node_password: str = os.getenv("RUCHE_NODE_PASSWORD", "")
    welcome_msg: str = os.getenv("RUCHE_WELCOME_MSG", "Hello, Swarm!")
    full_node: bool = _env_bool("RUCHE_FULL_NODE", True)
    swap_enable: bool = _env_bool("RUCHE_SWAP_ENABLE", True)
    reserve_doubling: bool = _env_bool("RUCHE_RESERVE_DOUBLING", False)

    # Network
    # Port templates: 1-3 digits followed by "xx", e.g. "17xx" -> 1705 for node 5.
    nat_addr: str = os.getenv("RUCHE_NAT_ADDR", "127.0.0.1")
    api_port: str = os.getenv("RUCHE_API_PORT", "17xx")
    p2p_port: str = os.getenv("RUCHE_P2P_PORT", "18xx")
    use_docker_host: bool = _env_bool("RUCHE_USE_DOCKER_HOST", False)

    # Chains
    eth_rpc: str = os.getenv("RUCHE_ETH_RPC", "")
    gno_rpc: str = os.getenv("RUCHE_GNO_RPC", "")

    # Storage
    root_path: str = os.getenv("RUCHE_ROOT_PATH", "/var/lib/ruche")
    parent_dir_format: str = os.getenv("RUCHE_PARENT_DIR_FORMAT", "swarm_data_xx")
    parent_dir_capacity: int = _env_int("RUCHE_PARENT_DIR_CAPACITY", 4)

    # Neighborhood suggestion service
    neighborhood_api_url: str = os.getenv("NEIGHBORHOOD_API_URL", DEFAULT_NEIGHBORHOOD_API_URL)
    neighborhood_timeout_s: int = _env_int("RUCHE_NEIGHBORHOOD_TIMEOUT_S", 10)


settings = Settings()
