"""
Minimal ABIs for the deployed SheAid contracts.

Only the functions and events the engine uses are declared. Struct getters
list their outputs by name so decoded tuples can be turned into dicts.
"""

from __future__ import annotations

from typing import Any


def _params(spec: str) -> list[dict[str, Any]]:
    """Parse "type name, type name" into ABI parameter dicts.

    A leading "indexed " marks event topics.
    """
    params = []
    for part in filter(None, (p.strip() for p in spec.split(","))):
        tokens = part.split()
        indexed = tokens[0] == "indexed"
        if indexed:
            tokens = tokens[1:]
        param = {"type": tokens[0], "name": tokens[1] if len(tokens) > 1 else ""}
        if indexed:
            param["indexed"] = True
        params.append(param)
    return params


def _fn(name: str, inputs: str = "", outputs: str = "", view: bool = False) -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": _params(inputs),
        "outputs": _params(outputs),
        "stateMutability": "view" if view else "nonpayable",
    }


def _event(name: str, inputs: str) -> dict[str, Any]:
    params = _params(inputs)
    for p in params:
        p.setdefault("indexed", False)
    return {"type": "event", "name": name, "inputs": params, "anonymous": False}


MOCK_TOKEN_ABI = [
    _fn("approve", "address spender, uint256 amount", "bool"),
    _fn("allowance", "address owner, address spender", "uint256", view=True),
    _fn("balanceOf", "address account", "uint256", view=True),
]

SHEAID_ROLES_ABI = [
    _fn("grantBeneficiaryRole", "address account"),
    _fn("isBeneficiary", "address account", "bool", view=True),
    _event("BeneficiaryRoleGranted", "indexed address account"),
]

NGO_REGISTRY_ABI = [
    _fn("registerNGO", "string name, string licenseId, uint256 stake"),
    _fn("approveNGO", "address ngo"),
    _fn(
        "ngos",
        "address ngo",
        "string name, string licenseId, uint256 stake, uint8 status",
        view=True,
    ),
    _event("NGORegistered", "indexed address ngo, string name, uint256 stake"),
    _event("NGOStatusChanged", "indexed address ngo, uint8 status"),
]

MERCHANT_REGISTRY_ABI = [
    _fn("registerMerchant", "string name, string metadata, uint256 stake"),
    _fn("approveMerchant", "address merchant"),
    _fn(
        "merchants",
        "address merchant",
        "string name, string metadata, uint256 stake, uint8 status",
        view=True,
    ),
    _event("MerchantRegistered", "indexed address merchant, string name, uint256 stake"),
    _event("MerchantStatusChanged", "indexed address merchant, uint8 status"),
]

MARKETPLACE_ABI = [
    _fn("listProduct", "bytes32 categoryId, uint256 price, string metadata"),
    _fn("setProductActive", "uint256 productId, bool active"),
    _fn("updateProductPrice", "uint256 productId, uint256 price"),
    _fn(
        "products",
        "uint256 productId",
        "uint256 id, address merchant, bytes32 categoryId, uint256 price, "
        "uint256 stock, bool active, string metadata",
        view=True,
    ),
    _fn("nextProductId", "", "uint256", view=True),
    _event(
        "ProductListed",
        "indexed uint256 productId, indexed address merchant, bytes32 categoryId, uint256 price",
    ),
    _event("ProductPriceUpdated", "indexed uint256 productId, uint256 price"),
    _event("ProductStatusChanged", "indexed uint256 productId, bool active"),
    _event(
        "PurchaseRecorded",
        "indexed uint256 productId, indexed address beneficiary, indexed address merchant, "
        "uint256 quantity, uint256 amount",
    ),
]

PROJECT_VAULT_ABI = [
    _fn(
        "createProject",
        "uint256 budget, string title, string description, string category, uint256 deposit",
    ),
    _fn("closeProject", "uint256 projectId"),
    _fn(
        "projects",
        "uint256 projectId",
        "uint256 id, address ngo, uint256 budget, uint256 deposit, uint256 donatedAmount, "
        "uint256 remainingFunds, uint8 status, string title, string description, "
        "string categoryTag",
        view=True,
    ),
    _fn("nextProjectId", "", "uint256", view=True),
    _event(
        "ProjectCreated",
        "indexed uint256 projectId, indexed address ngo, string title, uint256 budget",
    ),
    _event(
        "ProjectDonationReceived",
        "indexed uint256 projectId, indexed address donor, uint256 amount",
    ),
    _event(
        "ProjectFundsAllocatedToBeneficiary",
        "indexed uint256 projectId, indexed address beneficiary, uint256 amount, uint256 timestamp",
    ),
    _event("ProjectClosed", "indexed uint256 projectId"),
]

CONTRACT_ABIS: dict[str, list[dict[str, Any]]] = {
    "MockToken": MOCK_TOKEN_ABI,
    "SheAidRoles": SHEAID_ROLES_ABI,
    "NGORegistry": NGO_REGISTRY_ABI,
    "MerchantRegistry": MERCHANT_REGISTRY_ABI,
    "Marketplace": MARKETPLACE_ABI,
    "ProjectVaultManager": PROJECT_VAULT_ABI,
}


def output_names(contract: str, method: str) -> list[str]:
    """Named outputs of a function, empty for single unnamed returns."""
    for entry in CONTRACT_ABIS.get(contract, []):
        if entry["type"] == "function" and entry["name"] == method:
            return [o["name"] for o in entry["outputs"] if o["name"]]
    return []


def encode_bytes32(text: str) -> bytes:
    """Encode a short string as a right-padded bytes32 (at most 31 bytes)."""
    raw = text.encode("utf-8")
    if len(raw) > 31:
        raise ValueError(f"String too long for bytes32: {text!r}")
    return raw.ljust(32, b"\x00")


def decode_bytes32(value: bytes | str) -> str:
    if isinstance(value, str):
        return value
    return bytes(value).rstrip(b"\x00").decode("utf-8", errors="replace")
