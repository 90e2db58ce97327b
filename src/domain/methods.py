"""
DAS API method catalogue.

Each Method maps to exactly one params builder. The mapping is checked at
import time so a new Method without a builder fails loudly instead of at
request time.
"""

from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping


class Method(Enum):
    """Read-only DAS API methods under test."""

    GET_ASSET = "getAsset"
    GET_ASSET_PROOF = "getAssetProof"
    GET_ASSETS_BY_OWNER = "getAssetsByOwner"
    GET_ASSETS_BY_AUTHORITY = "getAssetsByAuthority"
    GET_ASSETS_BY_GROUP = "getAssetsByGroup"
    GET_ASSETS_BY_CREATOR = "getAssetsByCreator"

    @classmethod
    def from_name(cls, name: str) -> "Method":
        """
        Look up a method by its wire name (e.g. "getAssetsByOwner").

        Raises:
            ValueError: If the name is not a known method
        """
        return cls(name.strip())


JSONRPC_VERSION = "2.0"
JSONRPC_REQUEST_ID = 0

# Both hosts must answer the same window of a paginated listing
PAGE_LIMIT = 100
DEFAULT_PAGE = 1
DEFAULT_GROUP_KEY = "collection"


def _default_sorting() -> Dict[str, str]:
    return {"sortBy": "created", "sortDirection": "desc"}


def _paging_params() -> Dict[str, Any]:
    return {
        "sortBy": _default_sorting(),
        "limit": PAGE_LIMIT,
        "page": DEFAULT_PAGE,
    }


def _get_asset_params(key: str) -> Dict[str, Any]:
    return {"id": key}


def _get_asset_proof_params(key: str) -> Dict[str, Any]:
    return {"id": key}


def _get_assets_by_owner_params(key: str) -> Dict[str, Any]:
    return {"ownerAddress": key, **_paging_params()}


def _get_assets_by_authority_params(key: str) -> Dict[str, Any]:
    return {"authorityAddress": key, **_paging_params()}


def _get_assets_by_group_params(key: str) -> Dict[str, Any]:
    return {"groupKey": DEFAULT_GROUP_KEY, "groupValue": key, **_paging_params()}


def _get_assets_by_creator_params(key: str) -> Dict[str, Any]:
    return {"creatorAddress": key, "onlyVerified": False, **_paging_params()}


PARAMS_BUILDERS: Mapping[Method, Callable[[str], Dict[str, Any]]] = MappingProxyType(
    {
        Method.GET_ASSET: _get_asset_params,
        Method.GET_ASSET_PROOF: _get_asset_proof_params,
        Method.GET_ASSETS_BY_OWNER: _get_assets_by_owner_params,
        Method.GET_ASSETS_BY_AUTHORITY: _get_assets_by_authority_params,
        Method.GET_ASSETS_BY_GROUP: _get_assets_by_group_params,
        Method.GET_ASSETS_BY_CREATOR: _get_assets_by_creator_params,
    }
)

_missing_builders = set(Method) - set(PARAMS_BUILDERS)
if _missing_builders:
    raise RuntimeError(
        f"Methods without params builders: {sorted(m.value for m in _missing_builders)}"
    )


def build_params(method: Method, key: str) -> Dict[str, Any]:
    """Build the method-specific JSON-RPC params for a single key."""
    return PARAMS_BUILDERS[method](key)


def build_request_body(method: Method, key: str) -> Dict[str, Any]:
    """
    Build the full JSON-RPC request envelope.

    Args:
        method: DAS API method
        key: Public key used as the test parameter

    Returns:
        Dict ready to be serialized as the POST body

    Example:
        >>> build_request_body(Method.GET_ASSET, "F9Lw3ki3hJ7PF9HQXsBzoY8GyE6sPoEZZdXJBsTTD2rk")
        {'jsonrpc': '2.0', 'id': 0, 'method': 'getAsset', 'params': {'id': 'F9Lw...'}}
    """
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": JSONRPC_REQUEST_ID,
        "method": method.value,
        "params": build_params(method, key),
    }
