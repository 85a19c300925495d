"""
Vaultum V2 contract bindings.

ABIs and per-chain deployment addresses come from a JSON registry published
alongside the contracts:

    {
      "abis": {"SmartAccount": [...], "SocialRecoveryModule": [...], ...},
      "addresses": {"11155111": {"SmartAccount": "0x...", ...}}
    }

The registry path is passed explicitly or read from VAULTUM_ABI_REGISTRY.
"""

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

from loguru import logger
from pydantic import BaseModel, Field
from web3 import AsyncWeb3, Web3
from web3.contract import AsyncContract

from vaultum_sdk.errors import UnsupportedChainError

ContractName = Literal[
    "SmartAccount",
    "SocialRecoveryModule",
    "SessionKeyValidator",
    "SpendingLimitModule",
]

REGISTRY_ENV_VAR = "VAULTUM_ABI_REGISTRY"
SEPOLIA_CHAIN_ID = 11155111


class ContractRegistry(BaseModel):
    abis: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)
    addresses: Dict[int, Dict[str, str]] = Field(default_factory=dict)

    def get_abi(self, name: str) -> List[Dict[str, Any]]:
        try:
            return self.abis[name]
        except KeyError:
            raise KeyError(f"No ABI registered for {name}") from None

    def get_address(self, name: str, chain_id: int) -> str:
        deployment = self.addresses.get(chain_id)
        if deployment is None:
            raise UnsupportedChainError(f"No Vaultum deployment on chain {chain_id}")
        if name not in deployment:
            raise UnsupportedChainError(f"{name} is not deployed on chain {chain_id}")
        return Web3.to_checksum_address(deployment[name])

    def supported_chains(self) -> List[int]:
        return sorted(self.addresses)


class SepoliaDeployment(BaseModel):
    chain_id: int = SEPOLIA_CHAIN_ID
    smart_account: str
    social_recovery: str
    session_validator: str
    spending_limits: str


@lru_cache(maxsize=8)
def _read_registry(path: str) -> ContractRegistry:
    logger.debug(f"Loading contract registry from {path}")
    with Path(path).open("r", encoding="utf-8") as f:
        return ContractRegistry.model_validate(json.load(f))


def load_registry(path: Optional[Union[str, Path]] = None) -> ContractRegistry:
    """Load the ABI/address registry from `path` or from VAULTUM_ABI_REGISTRY"""
    location = path or os.environ.get(REGISTRY_ENV_VAR)
    if not location:
        raise FileNotFoundError(
            f"No contract registry configured. Pass a path or set {REGISTRY_ENV_VAR}."
        )
    return _read_registry(str(Path(location).resolve()))


def _registry(registry: Optional[ContractRegistry]) -> ContractRegistry:
    return registry if registry is not None else load_registry()


def get_address(name: ContractName, chain_id: int, registry: Optional[ContractRegistry] = None) -> str:
    return _registry(registry).get_address(name, chain_id)


def get_vaultum_contract(
    name: ContractName,
    chain_id: int,
    w3: AsyncWeb3,
    registry: Optional[ContractRegistry] = None,
) -> AsyncContract:
    """Bind a Vaultum contract on `chain_id`.

    Transactions against the returned contract are signed by whoever sends
    them; see SignedVaultumClient for the signing path.
    """
    reg = _registry(registry)
    return w3.eth.contract(address=reg.get_address(name, chain_id), abi=reg.get_abi(name))


def is_supported_chain(chain_id: int, registry: Optional[ContractRegistry] = None) -> bool:
    return chain_id in _registry(registry).addresses


def get_supported_chains(registry: Optional[ContractRegistry] = None) -> List[int]:
    return _registry(registry).supported_chains()


def sepolia_v2(registry: Optional[ContractRegistry] = None) -> SepoliaDeployment:
    reg = _registry(registry)
    return SepoliaDeployment(
        smart_account=reg.get_address("SmartAccount", SEPOLIA_CHAIN_ID),
        social_recovery=reg.get_address("SocialRecoveryModule", SEPOLIA_CHAIN_ID),
        session_validator=reg.get_address("SessionKeyValidator", SEPOLIA_CHAIN_ID),
        spending_limits=reg.get_address("SpendingLimitModule", SEPOLIA_CHAIN_ID),
    )
