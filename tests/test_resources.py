import os
import stat
from dataclasses import replace

import pytest

from ruche.errors import DirectoryAlreadyExists, InvalidTemplate
from ruche.resources import (
    NODE_DIR_MODE,
    ResourceResolver,
    dir_index,
    node_path,
    parent_dir_name,
    remove_node_dir,
    resolve_port,
)


def test_resolve_port_substitutes_padded_id():
    assert resolve_port(5, "17xx") == "1705"
    assert resolve_port(42, "18xx") == "1842"
    assert resolve_port(1, "1xx") == "101"
    assert resolve_port(99, "123xx") == "12399"


@pytest.mark.parametrize("template", ["1705", "test", "1x70", "1xx0", "15340xx", "xx", "17xx\n", "", "17XX", "\u0661\u0667xx"])
def test_resolve_port_rejects_invalid_templates(template):
    with pytest.raises(InvalidTemplate):
        resolve_port(5, template)


@pytest.mark.parametrize(
    "node_id,capacity,expected",
    [
        (1, 4, 1),
        (4, 4, 1),
        (5, 4, 2),
        (8, 4, 2),
        (9, 4, 3),
        (99, 4, 25),
        (3, 3, 1),
        (4, 3, 2),
        (7, 3, 3),
        (5, 5, 1),
        (6, 5, 2),
    ],
)
def test_dir_index(node_id, capacity, expected):
    assert dir_index(node_id, capacity) == expected


def test_dir_index_rejects_zero_capacity():
    with pytest.raises(InvalidTemplate):
        dir_index(1, 0)


def test_parent_dir_name():
    assert parent_dir_name(1, "swarm_data_xx", 4) == "swarm_data_01"
    assert parent_dir_name(5, "swarm_data_xx", 4) == "swarm_data_02"
    assert parent_dir_name(9, "swarm_data_xx", 4) == "swarm_data_03"
    assert parent_dir_name(4, "swarm_data_xx", 3) == "swarm_data_02"
    assert parent_dir_name(4, "vol-xx", 3) == "vol-02"


@pytest.mark.parametrize("template", ["swarm_data_x", "swarm_data", "swarm data xx", ""])
def test_parent_dir_name_rejects_invalid_templates(template):
    with pytest.raises(InvalidTemplate):
        parent_dir_name(1, template, 4)


def test_node_path():
    root = os.path.join("/media", "swarm")
    assert node_path(5, root, "swarm_data_xx", 4) == os.path.join(root, "swarm_data_02", "node_05")
    assert node_path(99, root, "swarm_data_xx", 4) == os.path.join(root, "swarm_data_25", "node_99")
    assert node_path(1, root, "data_xx", 4) == os.path.join(root, "data_01", "node_01")
    assert node_path(99, root, "storage_xx", 4) == os.path.join(root, "storage_25", "node_99")


def test_resolver_ports_from_settings(settings):
    resolver = ResourceResolver(settings)
    assert resolver.api_port(5) == "1705"
    assert resolver.p2p_port(5) == "1805"


def test_resolver_validates_on_every_call(settings):
    resolver = ResourceResolver(replace(settings, api_port="1705"))
    with pytest.raises(InvalidTemplate):
        resolver.api_port(5)
    # p2p template is still fine on its own
    assert resolver.p2p_port(5) == "1805"


def test_create_node_dir_sets_mode(settings):
    resolver = ResourceResolver(settings)
    path = resolver.create_node_dir(1)

    assert path == os.path.join(settings.root_path, "swarm_data_01", "node_01")
    assert os.path.isdir(path)
    assert stat.S_IMODE(os.stat(path).st_mode) == NODE_DIR_MODE


def test_create_node_dir_fails_if_exists(settings):
    resolver = ResourceResolver(settings)
    existing = resolver.node_path(1)
    os.makedirs(existing)

    with pytest.raises(DirectoryAlreadyExists) as exc:
        resolver.create_node_dir(1)
    assert existing in str(exc.value)


def test_create_node_dir_reuses_existing_parent(settings):
    resolver = ResourceResolver(settings)
    os.makedirs(os.path.join(settings.root_path, "swarm_data_01"))

    path = resolver.create_node_dir(2)
    assert os.path.isdir(path)


def test_create_node_dir_with_invalid_format_creates_nothing(settings):
    resolver = ResourceResolver(replace(settings, parent_dir_format="swarm_data_x"))
    with pytest.raises(InvalidTemplate):
        resolver.create_node_dir(1)
    assert not os.path.exists(settings.root_path)


def test_remove_node_dir_removes_nested_content(tmp_path):
    node_dir = tmp_path / "swarm_data_01" / "node_01"
    (node_dir / "localstore").mkdir(parents=True)
    (node_dir / "localstore" / "chunk").write_text("data")

    remove_node_dir(str(node_dir))

    assert not node_dir.exists()
    assert (tmp_path / "swarm_data_01").exists()


def test_remove_node_dir_ignores_missing(tmp_path):
    remove_node_dir(str(tmp_path / "missing"))
