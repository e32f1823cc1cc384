import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from twingate_handler import DEFAULT_PROVIDER_VERSION, FetchConfig, FieldSet
from utils import sanitize_name

logger = logging.getLogger(__name__)

MODULE_NAME = "twingate"

# entity type -> (terraform resource type, output name prefix, section title)
ENTITY_TYPES = {
    "RemoteNetwork": ("twingate_remote_network", "network", "Twingate Remote Networks"),
    "Connector": ("twingate_connector", "connector", "Twingate Connectors"),
    "Group": ("twingate_group", "group", "Twingate Groups"),
    "Resource": ("twingate_resource", "resource", "Twingate Resources"),
}


def terraform_label(name: str) -> str:
    """Sanitized name reduced to characters Terraform accepts in block labels and references."""
    sanitized = sanitize_name(name)
    label = re.sub(r"[^A-Za-z0-9_-]", "-", sanitized)
    if label and not re.match(r"[A-Za-z_]", label):
        label = f"_{label}"
    if label != sanitized:
        logger.warning("Name '%s' is not a valid Terraform identifier, using %s", name, label)
    return label


class TerraformGenerationError(Exception):
    """Raised when the fetched snapshot cannot be turned into consistent Terraform."""


@dataclass
class TerraformVariables:
    """Values written to `<module>.auto.tfvars.json` for the root module."""
    network_name: str
    api_key: str = field(repr=False)
    extra_vars: Dict[str, object] = field(default_factory=dict)

    def __post_init__(self):
        if not self.network_name:
            raise ValueError("A Twingate network name is required")
        if not self.api_key:
            raise ValueError("A Twingate API key is required")

    def to_json(self, module: str = MODULE_NAME) -> str:
        values = {
            f"{module}_network_name": self.network_name,
            f"{module}_api_key": self.api_key,
        }
        values.update(self.extra_vars)
        return json.dumps(values, indent=2)


class IdMap:
    """Maps Twingate ids to the Terraform names used for them during one export."""

    def __init__(self):
        self._names: Dict[str, str] = {}
        self._types: Dict[str, str] = {}
        self._taken: Dict[str, set] = {}

    def register(self, entity_type: str, node: Dict) -> str:
        """Assign a unique Terraform name to a node and return it."""
        if node["id"] in self._names:
            return self._names[node["id"]]

        base = terraform_label(node.get("name") or "") or "unnamed"
        taken = self._taken.setdefault(entity_type, set())
        tf_id = base
        count = 0
        while tf_id in taken:
            count += 1
            tf_id = f"{base}_{count}"
        if tf_id != base:
            logger.warning("Duplicate %s name '%s' (ID: %s) renamed to %s", entity_type, node.get("name"), node["id"], tf_id)

        taken.add(tf_id)
        self._names[node["id"]] = tf_id
        self._types[node["id"]] = entity_type
        return tf_id

    def __getitem__(self, entity_id: str) -> str:
        return self._names[entity_id]

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._names

    def __len__(self) -> int:
        return len(self._names)

    def reference(self, entity_type: str, entity_id: Optional[str]) -> str:
        """Terraform expression for the id of an already registered entity."""
        if entity_id not in self._names or self._types[entity_id] != entity_type:
            raise TerraformGenerationError(f"{entity_type} '{entity_id}' is referenced but not part of the export")
        return f"{ENTITY_TYPES[entity_type][0]}.{self._names[entity_id]}.id"


def hcl_string(value) -> str:
    """Quote a value as an HCL string literal."""
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"').replace("${", "$${").replace("%{", "%%{")
    return f'"{escaped}"'


def format_port_range(port: Dict) -> str:
    if port["start"] == port["end"]:
        return f'"{port["start"]}"'
    return f'"{port["start"]}-{port["end"]}"'


def _output_block(entity_type: str, tf_id: str) -> str:
    tf_type, prefix, _ = ENTITY_TYPES[entity_type]
    return f"""output "{prefix}-{tf_id}" {{
  value = {tf_type}.{tf_id}
}}
"""


def render_remote_network(node: Dict, id_map: IdMap) -> str:
    tf_id = id_map[node["id"]]
    return f"""
resource "twingate_remote_network" "{tf_id}" {{ # Id: {node["id"]}
  name = {hcl_string(node["name"])}
}}
""" + _output_block("RemoteNetwork", tf_id)


def render_connector(node: Dict, id_map: IdMap) -> str:
    tf_id = id_map[node["id"]]
    return f"""
resource "twingate_connector" "{tf_id}" {{ # Id: {node["id"]}
  name = {hcl_string(node["name"])}
  remote_network_id = {id_map.reference("RemoteNetwork", node.get("remoteNetworkId"))}
}}
""" + _output_block("Connector", tf_id)


def render_group(node: Dict, id_map: IdMap) -> str:
    tf_id = id_map[node["id"]]
    return f"""
resource "twingate_group" "{tf_id}" {{ # Id: {node["id"]}
  name = {hcl_string(node["name"])}
}}
""" + _output_block("Group", tf_id)


def render_protocols(protocols: Dict) -> str:
    """Render the nested protocols block of a resource."""
    lines = ["  protocols {", f"    allow_icmp = {str(bool(protocols.get('allowIcmp'))).lower()}"]
    for protocol in ("tcp", "udp"):
        rule = protocols.get(protocol) or {}
        ports = ", ".join(format_port_range(port) for port in rule.get("ports") or [])
        lines += [
            f"    {protocol} {{",
            f"      policy = {hcl_string(rule.get('policy', 'ALLOW_ALL'))}",
            f"      ports = [{ports}]",
            "    }",
        ]
    lines.append("  }")
    return "\n".join(lines) + "\n"


def render_resource(node: Dict, id_map: IdMap) -> str:
    tf_id = id_map[node["id"]]
    address = node.get("address")
    if isinstance(address, dict):
        address = address.get("value")
    group_ids = ", ".join(id_map.reference("Group", group_id) for group_id in node.get("groups") or [])

    block = f"""
resource "twingate_resource" "{tf_id}" {{ # Id: {node["id"]}
  name = {hcl_string(node["name"])}
  address = {hcl_string(address)}
  remote_network_id = {id_map.reference("RemoteNetwork", node.get("remoteNetworkId"))}
  group_ids = [{group_ids}]
"""
    if node.get("protocols"):
        block += render_protocols(node["protocols"])
    return block + "}\n" + _output_block("Resource", tf_id)


RENDERERS = {
    "RemoteNetwork": render_remote_network,
    "Connector": render_connector,
    "Group": render_group,
    "Resource": render_resource,
}


def build_import_line(entity_type: str, tf_id: str, entity_id: str, module: str = MODULE_NAME) -> str:
    return f"terraform import module.{module}.{ENTITY_TYPES[entity_type][0]}.{tf_id} {entity_id}"


def format_import_script(tf_imports: List[str], windows: bool = False) -> str:
    """Join import commands into a .bat (CRLF) or POSIX shell script."""
    if windows:
        return "\r\n".join(tf_imports)
    return "#!/bin/sh\n" + "\n".join(tf_imports)


def render_section(entity_type: str, blocks: List[str]) -> str:
    title = ENTITY_TYPES[entity_type][2]
    return f"\n#\n# {title}\n#\n" + "\n".join(blocks)


def render_terraform(nodes: Dict[str, List[Dict]], module: str = MODULE_NAME) -> Tuple[str, List[str]]:
    """Render fetched nodes into module content and the matching import commands.

    Every node is registered in the id map before any block is rendered, so
    references only depend on the snapshot being complete, not on ordering.
    """
    id_map = IdMap()
    tf_imports = []
    for entity_type in ENTITY_TYPES:
        for node in nodes.get(entity_type, []):
            tf_id = id_map.register(entity_type, node)
            tf_imports.append(build_import_line(entity_type, tf_id, node["id"], module))

    sections = []
    for entity_type, render in RENDERERS.items():
        blocks = [render(node, id_map) for node in nodes.get(entity_type, [])]
        sections.append(render_section(entity_type, blocks))
        logger.info("Rendered %d %s blocks", len(blocks), entity_type)

    return "\n\n".join(sections), tf_imports


def generate_twingate_terraform(client, module: str = MODULE_NAME) -> Tuple[str, List[str]]:
    """Fetch the network's configuration and render it as Terraform."""
    config = FetchConfig(
        types_to_fetch=["RemoteNetwork", "Connector", "Group"],
        field_set=[FieldSet.ID, FieldSet.LABEL, FieldSet.NODES],
        record_transform_opts={"map_node_to_id": True},
    )
    nodes = client.fetch_all(config)
    config.field_set = [FieldSet.ALL]
    nodes["Resource"] = client.fetch_all_resources(config)
    return render_terraform(nodes, module)


def create_module_block(module: str = MODULE_NAME) -> str:
    """Root module declaring the sensitive variables and the Twingate module."""
    return f"""variable "{module}_network_name" {{
  type = string
  sensitive = true
}}
variable "{module}_api_key" {{
  type = string
  sensitive = true
}}

module "{module}" {{
  source = "./{module}"
  network_name = var.{module}_network_name
  api_key = var.{module}_api_key
}}
"""


def create_provider_block(provider_version: str = DEFAULT_PROVIDER_VERSION) -> str:
    """Generates the terraform and provider blocks of the Twingate module"""
    return f"""terraform {{
  required_providers {{
    twingate = {{
      source  = "Twingate/twingate"
      version = "{provider_version}"
    }}
  }}
}}

variable "network_name" {{
  type = string
  sensitive = true
}}
variable "api_key" {{
  type = string
  sensitive = true
}}

provider "twingate" {{
  api_token = var.api_key
  network   = var.network_name
}}
"""


def write_terraform_files(output_dir: str, tf_content: str, tf_imports: List[str], variables: TerraformVariables,
                          provider_version: str = DEFAULT_PROVIDER_VERSION, module: str = MODULE_NAME,
                          windows: Optional[bool] = None) -> List[str]:
    """Write the root module, tfvars, module files and import script.  Returns the paths written."""
    if windows is None:
        windows = os.name == 'nt'
    module_dir = os.path.join(output_dir, module)
    os.makedirs(module_dir, exist_ok=True)

    files = [
        (os.path.join(output_dir, f"{module}-module.tf"), create_module_block(module)),
        (os.path.join(output_dir, f"{module}.auto.tfvars.json"), variables.to_json(module)),
        (os.path.join(module_dir, f"{module}-provider.tf"), create_provider_block(provider_version)),
        (os.path.join(module_dir, f"{module}.tf"), tf_content),
    ]
    for path, content in files:
        with open(path, "w") as f:
            f.write(content)
        logger.debug("Wrote %s", path)

    script = os.path.join(output_dir, f"import-{module}.{'bat' if windows else 'sh'}")
    with open(script, "w", newline="") as f:
        f.write(format_import_script(tf_imports, windows))
    if not windows:
        os.chmod(script, 0o755)
    logger.info("Terraform import script created: %s", script)

    return [path for path, _ in files] + [script]


#Copyright (c) 2025 Stephen Agius
#Licensed under the GNU General Public License, version 3.
