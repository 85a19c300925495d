import asyncio
from typing import Any, Dict, List, Optional

from eth_account.signers.local import LocalAccount
from loguru import logger
from web3 import AsyncWeb3, Web3
from web3.contract import AsyncContract
from web3.contract.async_contract import AsyncContractFunction

from vaultum_sdk.contracts import ContractName, ContractRegistry, get_vaultum_contract
from vaultum_sdk.errors import UnsupportedChainError
from vaultum_sdk.gateway import HttpGateway
from vaultum_sdk.models import (
    AccountModule,
    Chain,
    ClientOptions,
    PollConfig,
    SessionKeyOptions,
    StatusResponse,
    SubmitRequest,
    SubmitResponse,
    UserOperation,
)
from vaultum_sdk.poller import OperationPoller, StatusCallback
from vaultum_sdk.vaultum_client import VaultumApiClient

CHAIN_NAMES: Dict[int, Chain] = {
    1: Chain.ethereum,
    42161: Chain.arbitrum,
    10: Chain.optimism,
    137: Chain.polygon,
    8453: Chain.base,
    11155111: Chain.sepolia,
}

# Server long-polls for up to SERVER_WAIT_S per request, then we pause briefly
SERVER_WAIT_S = 30
DEFAULT_OP_WAIT = PollConfig(interval_ms=1000, max_attempts=None, timeout_ms=120_000)

SMART_ACCOUNT_FALLBACK_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "execute",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "target", "type": "address"},
            {"name": "value", "type": "uint256"},
            {"name": "data", "type": "bytes"},
        ],
        "outputs": [],
    }
]


class VaultumClient:
    """Wallet-level client: Vaultum API plus read access to the chain.

    Operations that send transactions live on SignedVaultumClient, obtained
    through `with_signer`.
    """

    def __init__(
        self,
        options: ClientOptions,
        w3: AsyncWeb3,
        registry: Optional[ContractRegistry] = None,
        gateway: Optional[HttpGateway] = None,
        api: Optional[VaultumApiClient] = None,
    ):
        self.api = api or VaultumApiClient(options, gateway=gateway)
        self.options = options
        self.w3 = w3
        self.registry = registry
        self.logger = logger

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self.api.close()

    def with_signer(self, account: LocalAccount) -> "SignedVaultumClient":
        return SignedVaultumClient(
            self.options, self.w3, account, registry=self.registry, api=self.api
        )

    async def get_chain_id(self) -> int:
        return int(await self.w3.eth.chain_id)

    async def get_chain_name(self) -> Chain:
        chain_id = await self.get_chain_id()
        try:
            return CHAIN_NAMES[chain_id]
        except KeyError:
            raise UnsupportedChainError(f"Chain {chain_id} is not supported by Vaultum") from None

    async def deploy_account(
        self,
        owner: str,
        modules: Optional[List[AccountModule]] = None,
        salt: Optional[str] = None,
    ) -> Dict[str, Any]:
        chain = await self.get_chain_name()
        self.logger.info(f"Deploying smart account for {owner} on {chain.value}")
        return await self.api.deploy_account(owner, chain, modules=modules, salt=salt)

    async def submit_user_op(
        self, user_op: UserOperation, signature: Optional[str] = None
    ) -> SubmitResponse:
        chain = await self.get_chain_name()
        request = SubmitRequest(chain=chain, user_op=user_op, signature=signature)
        return await self.api.submit_op(request)

    async def get_op_status(self, op_id: str) -> StatusResponse:
        return await self.api.get_op_status(op_id)

    async def wait_for_op(
        self,
        op_id: str,
        config: Optional[PollConfig] = None,
        on_status_change: Optional[StatusCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> StatusResponse:
        """Wait for an operation using the server-side long-poll endpoint"""

        async def fetch(target: str) -> StatusResponse:
            return await self.api.wait_on_server(target, timeout_s=SERVER_WAIT_S)

        poller = OperationPoller(fetch, config or DEFAULT_OP_WAIT)
        return await poller.poll(op_id, on_status=on_status_change, cancel_event=cancel_event)

    async def initiate_recovery(
        self, account: str, new_owner: str, guardian: str, signature: str
    ) -> Dict[str, Any]:
        return await self.api.initiate_recovery(account, new_owner, guardian, signature)

    async def get_recovery_status(self, account: str) -> Dict[str, Any]:
        return await self.api.get_recovery_status(account)


class SignedVaultumClient(VaultumClient):
    """VaultumClient that can sign and send transactions with a local account"""

    def __init__(
        self,
        options: ClientOptions,
        w3: AsyncWeb3,
        account: LocalAccount,
        registry: Optional[ContractRegistry] = None,
        gateway: Optional[HttpGateway] = None,
        api: Optional[VaultumApiClient] = None,
    ):
        super().__init__(options, w3, registry=registry, gateway=gateway, api=api)
        self.account = account

    @property
    def address(self) -> str:
        return self.account.address

    def get_account_contract(self, address: str) -> AsyncContract:
        abi = SMART_ACCOUNT_FALLBACK_ABI
        if self.registry is not None and "SmartAccount" in self.registry.abis:
            abi = self.registry.get_abi("SmartAccount")
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    async def _module(self, name: ContractName) -> AsyncContract:
        chain_id = await self.get_chain_id()
        return get_vaultum_contract(name, chain_id, self.w3, self.registry)

    async def _transact(self, func: AsyncContractFunction) -> str:
        """Build, sign and broadcast a contract call; returns the transaction hash"""
        nonce = await self.w3.eth.get_transaction_count(self.address)
        tx = await func.build_transaction(
            {
                "from": self.address,
                "nonce": nonce,
                "chainId": await self.get_chain_id(),
            }
        )
        signed = self.account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        hex_hash = Web3.to_hex(tx_hash)
        self.logger.info(f"Sent {func.fn_name} from {self.address}: {hex_hash}")
        return hex_hash

    async def execute(self, account: str, target: str, value: int, data: bytes) -> str:
        contract = self.get_account_contract(account)
        func = contract.functions.execute(Web3.to_checksum_address(target), value, data)
        return await self._transact(func)

    async def add_guardian(self, account: str, guardian: str) -> str:
        module = await self._module("SocialRecoveryModule")
        func = module.functions.addGuardian(
            Web3.to_checksum_address(account), Web3.to_checksum_address(guardian)
        )
        return await self._transact(func)

    async def grant_session_key(self, account: str, options: SessionKeyOptions) -> str:
        module = await self._module("SessionKeyValidator")
        selectors = [bytes.fromhex(s.removeprefix("0x")) for s in options.allowed_selectors]
        func = module.functions.grantSessionKey(
            Web3.to_checksum_address(account),
            Web3.to_checksum_address(options.address),
            options.expiry,
            selectors,
        )
        return await self._transact(func)

    async def revoke_session_key(self, account: str, key: str) -> str:
        module = await self._module("SessionKeyValidator")
        func = module.functions.revokeSessionKey(
            Web3.to_checksum_address(account), Web3.to_checksum_address(key)
        )
        return await self._transact(func)

    async def set_spending_limit(self, account: str, token: str, limit: int) -> str:
        module = await self._module("SpendingLimitModule")
        func = module.functions.setLimit(
            Web3.to_checksum_address(account), Web3.to_checksum_address(token), limit
        )
        return await self._transact(func)
