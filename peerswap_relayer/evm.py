"""
Chain client adapter: one instance per watched EVM chain.

Wraps the read/write RPC surface the relayer needs and translates every
web3/transport failure into the relayer error taxonomy.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import structlog
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import to_checksum_address
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError, TimeExhausted

from .abi import ESCROW_DST_ABI, ESCROW_FACTORY_ABI, ESCROW_SRC_ABI
from .config import ChainConfig
from .errors import (
    ConfigurationError,
    ConfirmationTimeout,
    ContractRevertError,
    DecodeError,
    InsufficientFundsError,
    RpcError,
)
from .models import ExecutionData, RawLog, normalize_hex

logger = structlog.get_logger()


@dataclass
class Receipt:
    """Outcome of a mined transaction."""

    tx_hash: str
    status: int
    block_number: int
    gas_used: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == 1


def _is_insufficient_funds(error: Exception) -> bool:
    return "insufficient funds" in str(error).lower()


class ChainClient:
    """
    Async client for a single chain.

    The signing account is shared with the other chains' clients; each
    client keeps its own nonce sequence guarded by a send lock.
    """

    def __init__(
        self,
        chain: ChainConfig,
        private_key: Optional[str] = None,
        gas_limit: int = 500_000,
        w3: Optional[AsyncWeb3] = None,
    ):
        self.chain = chain
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(chain.rpc_url))
        self.account: Optional[LocalAccount] = (
            Account.from_key(private_key) if private_key else None
        )
        self.gas_limit = gas_limit
        self._send_lock = asyncio.Lock()
        self._next_nonce: Optional[int] = None

        logger.info(
            "chain_client_initialized",
            chain=chain.key,
            chain_id=chain.chain_id,
            rpc_url=chain.rpc_url,
            sender=self.account.address if self.account else None,
        )

    @property
    def key(self) -> str:
        return self.chain.key

    @property
    def address(self) -> str:
        """Signing address of the relayer on this chain."""
        if not self.account:
            raise ConfigurationError("RELAYER_PRIVATE_KEY not configured")
        return self.account.address

    def _contract(self, address: str, abi: list[dict]) -> Any:
        return self.w3.eth.contract(address=to_checksum_address(address), abi=abi)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_latest_block(self) -> int:
        try:
            return int(await self.w3.eth.block_number)
        except Exception as e:
            raise RpcError(f"[{self.key}] eth_blockNumber failed: {e}") from e

    async def get_logs(self, address: str, from_block: int, to_block: int) -> list[RawLog]:
        """Logs emitted by ``address`` in the inclusive block range."""
        try:
            logs = await self.w3.eth.get_logs(
                {
                    "address": to_checksum_address(address),
                    "fromBlock": from_block,
                    "toBlock": to_block,
                }
            )
        except Exception as e:
            raise RpcError(
                f"[{self.key}] eth_getLogs {address} [{from_block}, {to_block}] failed: {e}"
            ) from e
        return [RawLog.from_rpc(log) for log in logs]

    async def get_bytecode(self, address: str) -> bytes:
        try:
            code = await self.w3.eth.get_code(to_checksum_address(address))
        except Exception as e:
            raise RpcError(f"[{self.key}] eth_getCode {address} failed: {e}") from e
        return bytes(code or b"")

    async def has_code(self, address: str) -> bool:
        """True when bytecode is deployed at ``address``."""
        if not address:
            return False
        return len(await self.get_bytecode(address)) > 0

    async def read_contract(
        self, address: str, abi: list[dict], fn: str, args: Sequence[Any] = ()
    ) -> Any:
        """Call a view function."""
        contract = self._contract(address, abi)
        try:
            return await getattr(contract.functions, fn)(*args).call()
        except (BadFunctionCallOutput, ContractLogicError) as e:
            raise DecodeError(f"[{self.key}] {fn}() on {address} returned bad data: {e}") from e
        except Exception as e:
            raise RpcError(f"[{self.key}] {fn}() on {address} failed: {e}") from e

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _nonce(self) -> int:
        if self._next_nonce is None:
            self._next_nonce = await self.w3.eth.get_transaction_count(self.address, "pending")
        return self._next_nonce

    async def write_contract(
        self,
        address: str,
        abi: list[dict],
        fn: str,
        args: Sequence[Any] = (),
        value: int = 0,
    ) -> str:
        """Sign and broadcast a contract call. Returns the tx hash."""
        sender = self.address
        call = getattr(self._contract(address, abi).functions, fn)(*args)

        async with self._send_lock:
            try:
                gas = await call.estimate_gas({"from": sender, "value": value})
                nonce = await self._nonce()
                tx = await call.build_transaction(
                    {
                        "from": sender,
                        "chainId": self.chain.chain_id,
                        "nonce": nonce,
                        "value": value,
                        "gas": min(int(gas * 1.2), self.gas_limit * 4),
                        "gasPrice": await self.w3.eth.gas_price,
                    }
                )
                signed = self.account.sign_transaction(tx)
                tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
            except ContractLogicError as e:
                self._next_nonce = None
                raise ContractRevertError(f"[{self.key}] {fn}() on {address} reverted: {e}") from e
            except Exception as e:
                self._next_nonce = None
                if _is_insufficient_funds(e):
                    raise InsufficientFundsError(
                        f"[{self.key}] insufficient funds for {fn}() from {sender}"
                    ) from e
                raise RpcError(f"[{self.key}] {fn}() on {address} failed: {e}") from e

            self._next_nonce = nonce + 1

        tx_hash_hex = normalize_hex(tx_hash)
        logger.info(
            "tx_sent",
            chain=self.key,
            fn=fn,
            to=address,
            tx_hash=tx_hash_hex,
            nonce=nonce,
        )
        return tx_hash_hex

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 60.0) -> Receipt:
        """Bounded wait for a transaction to be mined."""
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except TimeExhausted as e:
            raise ConfirmationTimeout(tx_hash, timeout) from e
        except Exception as e:
            raise RpcError(f"[{self.key}] receipt for {tx_hash} failed: {e}") from e

        return Receipt(
            tx_hash=tx_hash,
            status=int(receipt["status"]),
            block_number=int(receipt["blockNumber"]),
            gas_used=int(receipt.get("gasUsed", 0)),
        )

    async def transact(
        self,
        address: str,
        abi: list[dict],
        fn: str,
        args: Sequence[Any] = (),
        timeout: float = 60.0,
    ) -> Receipt:
        """write_contract + wait_for_receipt; a failed receipt raises."""
        tx_hash = await self.write_contract(address, abi, fn, args)
        receipt = await self.wait_for_receipt(tx_hash, timeout=timeout)
        if not receipt.succeeded:
            raise ContractRevertError(
                f"[{self.key}] {fn}() on {address} reverted in block {receipt.block_number}",
                tx_hash=tx_hash,
            )
        return receipt

    # ------------------------------------------------------------------
    # Escrow / factory helpers
    # ------------------------------------------------------------------

    async def relayer_of(self, factory: str) -> str:
        return str(await self.read_contract(factory, ESCROW_FACTORY_ABI, "relayer"))

    async def is_active(self, escrow: str) -> bool:
        return bool(await self.read_contract(escrow, ESCROW_SRC_ABI, "isActive"))

    async def execution_data_of(self, escrow: str) -> ExecutionData:
        """Authoritative execution data stored in a deployed escrow."""
        raw = await self.read_contract(escrow, ESCROW_DST_ABI, "executionData")
        try:
            return ExecutionData.from_abi(raw)
        except (TypeError, ValueError, KeyError) as e:
            raise DecodeError(f"[{self.key}] executionData() on {escrow}: {e}") from e

    async def escrow_addresses(
        self, factory: str, execution_data: ExecutionData
    ) -> tuple[str, str]:
        """Deterministic (source, destination) escrow addresses."""
        args = [execution_data.to_abi()]
        src, dst = await asyncio.gather(
            self.read_contract(factory, ESCROW_FACTORY_ABI, "addressOfEscrowSrc", args),
            self.read_contract(factory, ESCROW_FACTORY_ABI, "addressOfEscrowDst", args),
        )
        return str(src), str(dst)
