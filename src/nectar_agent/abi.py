from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path

ABIS_DIR = Path(__file__).parent / "abis"

ERC20_ABI_PATH = ABIS_DIR / "ERC20.json"
VTOKEN_ABI_PATH = ABIS_DIR / "VToken.json"
AAVE_POOL_ABI_PATH = ABIS_DIR / "AavePool.json"
ERC4626_VAULT_ABI_PATH = ABIS_DIR / "ERC4626Vault.json"
WBNB_ABI_PATH = ABIS_DIR / "WBNB.json"
PANCAKE_SMART_ROUTER_ABI_PATH = ABIS_DIR / "PancakeSmartRouter.json"
PANCAKE_QUOTER_ABI_PATH = ABIS_DIR / "PancakeQuoterV2.json"


@lru_cache(maxsize=None)
def load_abi(path: str | Path) -> list[dict]:
    """Load an ABI from a JSON file and return its "abi" field.

    Args:
        path: Path to the JSON file containing an "abi" field.

    Returns:
        ABI as a list of dictionaries.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
        KeyError: If the JSON does not contain an "abi" field.
    """
    p = Path(path)
    with p.open() as f:
        data = json.load(f)
    return data["abi"]


def load_erc20_abi() -> list[dict]:
    """Load the ERC20 ABI."""
    return load_abi(ERC20_ABI_PATH)


def load_vtoken_abi() -> list[dict]:
    """Load the Venus vToken ABI."""
    return load_abi(VTOKEN_ABI_PATH)


def load_aave_pool_abi() -> list[dict]:
    """Load the Aave V3 Pool ABI."""
    return load_abi(AAVE_POOL_ABI_PATH)


def load_erc4626_vault_abi() -> list[dict]:
    """Load the ERC-4626 vault ABI used by Lista Moolah vaults."""
    return load_abi(ERC4626_VAULT_ABI_PATH)


def load_wbnb_abi() -> list[dict]:
    return load_abi(WBNB_ABI_PATH)


def load_pancake_smart_router_abi() -> list[dict]:
    return load_abi(PANCAKE_SMART_ROUTER_ABI_PATH)


def load_pancake_quoter_abi() -> list[dict]:
    return load_abi(PANCAKE_QUOTER_ABI_PATH)
