import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

REGISTRY_URL = "https://registry.terraform.io/v1/providers/Twingate/twingate"
DEFAULT_PROVIDER_VERSION = ">= 0.1.8"
DEFAULT_DOMAIN = "twingate.com"
PAGE_SIZE = 50


class TwingateApiError(Exception):
    """Raised when the Twingate API answers with GraphQL errors or a failed mutation."""


class FieldSet:
    ID = "id"
    LABEL = "label"
    NODES = "nodes"
    ALL = "all"


# GraphQL connection name and selections per field set for each entity type
_TYPE_FIELDS = {
    "RemoteNetwork": {
        "query": "remoteNetworks",
        FieldSet.LABEL: "name",
        FieldSet.NODES: "",
        FieldSet.ALL: "name location isActive createdAt updatedAt",
    },
    "Connector": {
        "query": "connectors",
        FieldSet.LABEL: "name",
        FieldSet.NODES: "remoteNetwork { id }",
        FieldSet.ALL: "name state hostname lastHeartbeatAt remoteNetwork { id }",
    },
    "Group": {
        "query": "groups",
        FieldSet.LABEL: "name",
        FieldSet.NODES: "",
        FieldSet.ALL: "name type isActive createdAt updatedAt",
    },
    "Resource": {
        "query": "resources",
        FieldSet.LABEL: "name",
        FieldSet.NODES: "remoteNetwork { id } groups { edges { node { id } } }",
        FieldSet.ALL: (
            "name isActive createdAt updatedAt address { type value } "
            "remoteNetwork { id } groups { edges { node { id } } } "
            "protocols { allowIcmp tcp { policy ports { start end } } udp { policy ports { start end } } }"
        ),
    },
}

_DELETE_MUTATIONS = {
    "group": "groupDelete",
    "resource": "resourceDelete",
    "service": "serviceAccountDelete",
}


@dataclass
class FetchConfig:
    """What to fetch from the API and how much detail to ask for."""
    types_to_fetch: List[str] = field(default_factory=list)
    field_set: List[str] = field(default_factory=lambda: [FieldSet.ALL])
    record_transform_opts: Dict[str, Any] = field(default_factory=dict)


def build_selection(type_name: str, field_set: List[str]) -> str:
    """Build the GraphQL node selection for a type at the requested field sets."""
    try:
        fields = _TYPE_FIELDS[type_name]
    except KeyError:
        raise ValueError(f"Unsupported type: {type_name}")

    if FieldSet.ALL in field_set:
        return f"id {fields[FieldSet.ALL]}"
    selection = ["id"]
    for level in (FieldSet.LABEL, FieldSet.NODES):
        if level in field_set and fields[level]:
            selection.append(fields[level])
    return " ".join(selection)


def map_node_to_id(node: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten nested `{id}` objects into `<key>Id` and connections into lists of ids."""
    record = {}
    for key, value in node.items():
        if isinstance(value, dict) and set(value) == {"id"}:
            record[f"{key}Id"] = value["id"]
        elif isinstance(value, dict) and "edges" in value:
            record[key] = [edge["node"]["id"] for edge in value["edges"]]
        else:
            record[key] = value
    return record


class TwingateApiClient:
    """Minimal Twingate GraphQL client: paginated reads and deletes."""

    def __init__(self, network_name: str, api_key: str, domain: str = DEFAULT_DOMAIN,
                 session: Optional[requests.Session] = None):
        self.network_name = network_name
        self.url = f"https://{network_name}.{domain}/api/graphql/"
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
            "X-API-KEY": api_key,
        })

    def exec(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """POST a GraphQL document and return its `data` payload."""
        response = self.session.post(self.url, json={"query": query, "variables": variables or {}})
        response.raise_for_status()
        body = response.json()
        if body.get("errors"):
            messages = "; ".join(error.get("message", str(error)) for error in body["errors"])
            raise TwingateApiError(f"GraphQL error: {messages}")
        return body["data"]

    def fetch_type(self, type_name: str, field_set: List[str], transform: bool = False) -> List[Dict[str, Any]]:
        """Fetch every node of one type, following cursor pagination."""
        selection = build_selection(type_name, field_set)
        connection = _TYPE_FIELDS[type_name]["query"]
        query = (
            f"query ($first: Int, $after: String) {{ {connection}(first: $first, after: $after) {{ "
            f"pageInfo {{ hasNextPage endCursor }} edges {{ node {{ {selection} }} }} }} }}"
        )

        nodes = []
        cursor = None
        while True:
            data = self.exec(query, {"first": PAGE_SIZE, "after": cursor})[connection]
            nodes.extend(edge["node"] for edge in data["edges"])
            page_info = data["pageInfo"]
            if not page_info["hasNextPage"]:
                break
            cursor = page_info["endCursor"]

        logger.debug("Fetched %d %s records", len(nodes), type_name)
        if transform:
            nodes = [map_node_to_id(node) for node in nodes]
        return nodes

    def fetch_all(self, config: FetchConfig) -> Dict[str, List[Dict[str, Any]]]:
        """Fetch every type named in the config, keyed by type name, in API order."""
        transform = bool(config.record_transform_opts.get("map_node_to_id"))
        return {
            type_name: self.fetch_type(type_name, config.field_set, transform)
            for type_name in config.types_to_fetch
        }

    def fetch_all_resources(self, config: FetchConfig) -> List[Dict[str, Any]]:
        """Resources carry address and protocol details so they are fetched on their own."""
        transform = bool(config.record_transform_opts.get("map_node_to_id"))
        return self.fetch_type("Resource", config.field_set, transform)

    def _delete(self, kind: str, entity_id: str) -> Dict[str, Any]:
        mutation = _DELETE_MUTATIONS[kind]
        query = f"mutation ($id: ID!) {{ {mutation}(id: $id) {{ ok error }} }}"
        result = self.exec(query, {"id": entity_id})[mutation]
        if not result.get("ok"):
            raise TwingateApiError(f"Could not remove {kind} '{entity_id}': {result.get('error')}")
        return result

    def remove_group(self, group_id: str) -> Dict[str, Any]:
        return self._delete("group", group_id)

    def remove_resource(self, resource_id: str) -> Dict[str, Any]:
        return self._delete("resource", resource_id)

    def remove_service_account(self, service_account_id: str) -> Dict[str, Any]:
        return self._delete("service", service_account_id)


def get_latest_provider_version() -> str:
    """Fetch the latest Twingate provider version from the Terraform registry."""
    try:
        response = requests.get(REGISTRY_URL, timeout=10)
        response.raise_for_status()
        return response.json()['version']
    except requests.RequestException as e:
        logger.warning("Failed to fetch the latest Twingate provider version: %s", e)
        return DEFAULT_PROVIDER_VERSION


def check_provider_availability(provider_version: str) -> bool:
    """Check if the specified Twingate provider version is published on the registry."""
    try:
        response = requests.get(f"{REGISTRY_URL}/{provider_version}", timeout=10)
    except requests.RequestException:
        logger.warning("Unable to verify Twingate provider version availability. "
                       "Please ensure you have an active internet connection.")
        return False
    if response.status_code == 404:
        logger.warning("The specified Twingate provider version '%s' is not available. "
                       "This may cause Terraform to fail when initializing. Available versions can be found at: "
                       "https://registry.terraform.io/providers/Twingate/twingate/versions", provider_version)
        return False
    return True


#Copyright (c) 2025 Stephen Agius
#Licensed under the GNU General Public License, version 3.
