from __future__ import annotations

import logging
import os
import re
import shutil

from .errors import DirectoryAlreadyExists, InvalidTemplate, UpstreamFailure
from .models import format_id, node_name
from .settings import Settings

logger = logging.getLogger(__name__)

PLACEHOLDER = "xx"
NODE_DIR_MODE = 0o755

# Both patterns are used with fullmatch so a trailing newline never slips through.
PORT_TEMPLATE_RE = re.compile(r"\d{1,3}xx", re.ASCII)
# Same language as ([\w-]+)*[^x]?xx without the nested repetition.
PARENT_DIR_TEMPLATE_RE = re.compile(r"[\w-]*[^x]?xx")


def validate_port_template(template: str) -> None:
    if not PORT_TEMPLATE_RE.fullmatch(template or ""):
        raise InvalidTemplate(f"Invalid base port '{template}': expected 1-3 digits followed by 'xx'.")


def validate_parent_dir_template(template: str) -> None:
    if not PARENT_DIR_TEMPLATE_RE.fullmatch(template or ""):
        raise InvalidTemplate(f"Invalid parent directory format '{template}': expected a name ending in 'xx'.")


def resolve_port(node_id: int, template: str) -> str:
    """Substitute the node id into a port template ("17xx", 5 -> "1705")."""
    validate_port_template(template)
    return template.replace(PLACEHOLDER, format_id(node_id))


def dir_index(node_id: int, capacity: int) -> int:
    """1-based index of the parent directory holding `node_id`."""
    if capacity < 1:
        raise InvalidTemplate(f"Parent directory capacity must be at least 1, got {capacity}.")
    return ((node_id - 1) // capacity) + 1


def parent_dir_name(node_id: int, template: str, capacity: int) -> str:
    validate_parent_dir_template(template)
    return template.replace(PLACEHOLDER, format_id(dir_index(node_id, capacity)))


def node_path(node_id: int, root: str, template: str, capacity: int) -> str:
    return os.path.join(root, parent_dir_name(node_id, template, capacity), node_name(node_id))


class ResourceResolver:
    """Derives ports and the data directory of a node from its id and settings.

    Templates are validated on every call so that a bad configuration value
    surfaces where it is used.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def api_port(self, node_id: int) -> str:
        return resolve_port(node_id, self.settings.api_port)

    def p2p_port(self, node_id: int) -> str:
        return resolve_port(node_id, self.settings.p2p_port)

    def node_path(self, node_id: int) -> str:
        s = self.settings
        return node_path(node_id, os.path.abspath(s.root_path), s.parent_dir_format, s.parent_dir_capacity)

    def create_node_dir(self, node_id: int) -> str:
        """Create the node's data directory (and its parent) with NODE_DIR_MODE."""
        path = self.node_path(node_id)
        if os.path.exists(path):
            raise DirectoryAlreadyExists(f"Directory '{path}' already exists")
        try:
            os.makedirs(path)
            # makedirs is subject to the umask; set the mode explicitly.
            os.chmod(path, NODE_DIR_MODE)
        except FileExistsError as e:
            raise DirectoryAlreadyExists(f"Directory '{path}' already exists") from e
        except OSError as e:
            raise UpstreamFailure("filesystem", f"Unable to create '{path}': {e}") from e
        logger.debug("Created node directory %s", path)
        return path


def remove_node_dir(path: str) -> None:
    """Recursively delete a node directory. A missing directory is not an error."""
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        logger.warning("Node directory %s was already gone", path)
    except OSError as e:
        raise UpstreamFailure("filesystem", f"Unable to remove '{path}': {e}") from e
