# swapbot/wallet.py
"""
Signing wallet
Balances, allowances, fee fields and transaction submission over the RPC pool
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, Tuple

from eth_account import Account
from web3 import AsyncWeb3, Web3
from web3.exceptions import TimeExhausted, TransactionNotFound

from swapbot.abis import ERC20_ABI, PERMIT2_ABI
from swapbot.config import (
    CHAIN_ID,
    CONFIRMATION_TIMEOUT_SECONDS,
    PERMIT2,
    PRIORITY_FEE_GWEI,
    RECEIPT_POLL_SECONDS,
)
from swapbot.errors import TransactionTimeout, TransportFailure
from swapbot.rpc_pool import RPCPool

logger = logging.getLogger(__name__)


def tx_hash_hex(value: Any) -> str:
    if isinstance(value, str):
        return value
    return Web3.to_hex(value)


class Wallet:
    """
    One signing identity on one chain.

    Every read goes through `RPCPool.with_failover`. Nonce assignment and
    submission are serialised by a lock so two sends never share a nonce.
    """

    def __init__(
        self,
        private_key: str,
        pool: RPCPool,
        *,
        chain_id: int = CHAIN_ID,
        confirmation_timeout: float = CONFIRMATION_TIMEOUT_SECONDS,
        poll_latency: float = RECEIPT_POLL_SECONDS,
        priority_fee_gwei: Decimal = PRIORITY_FEE_GWEI,
    ):
        self.account = Account.from_key(private_key)
        self.address = self.account.address
        self.pool = pool
        self.chain_id = chain_id
        self.confirmation_timeout = confirmation_timeout
        self.poll_latency = poll_latency
        self.priority_fee_wei = Web3.to_wei(priority_fee_gwei, "gwei")
        self._send_lock = asyncio.Lock()

    @staticmethod
    def _erc20(w3: AsyncWeb3, token: str):
        return w3.eth.contract(address=Web3.to_checksum_address(token), abi=ERC20_ABI)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def token_balance(self, token: str) -> int:
        return await self.pool.with_failover(
            lambda w3: self._erc20(w3, token).functions.balanceOf(self.address).call(),
            label=f"balanceOf({token})",
        )

    async def native_balance(self) -> int:
        return await self.pool.with_failover(
            lambda w3: w3.eth.get_balance(self.address),
            label="eth_getBalance",
        )

    async def allowance(self, token: str, spender: str) -> int:
        spender = Web3.to_checksum_address(spender)
        return await self.pool.with_failover(
            lambda w3: self._erc20(w3, token).functions.allowance(self.address, spender).call(),
            label=f"allowance({token})",
        )

    async def permit2_allowance(self, token: str, spender: str) -> Tuple[int, int, int]:
        """(amount, expiration, nonce) granted to `spender` through Permit2"""
        token = Web3.to_checksum_address(token)
        spender = Web3.to_checksum_address(spender)

        async def _read(w3: AsyncWeb3):
            permit2 = w3.eth.contract(address=Web3.to_checksum_address(PERMIT2), abi=PERMIT2_ABI)
            amount, expiration, nonce = await permit2.functions.allowance(
                self.address, token, spender
            ).call()
            return int(amount), int(expiration), int(nonce)

        return await self.pool.with_failover(_read, label="permit2.allowance")

    async def gas_price(self) -> int:
        async def _read(w3: AsyncWeb3) -> int:
            return await w3.eth.gas_price

        return await self.pool.with_failover(_read, label="eth_gasPrice")

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        params = self._call_params(tx)
        return await self.pool.with_failover(
            lambda w3: w3.eth.estimate_gas(params),
            label="eth_estimateGas",
        )

    async def call(self, tx: Dict[str, Any]) -> bytes:
        """eth_call; a revert surfaces as ContractLogicError"""
        params = self._call_params(tx)
        return await self.pool.with_failover(
            lambda w3: w3.eth.call(params),
            label="eth_call",
        )

    def _call_params(self, tx: Dict[str, Any]) -> Dict[str, Any]:
        params = {
            "from": self.address,
            "to": Web3.to_checksum_address(tx["to"]),
            "data": tx.get("data", "0x"),
            "value": int(tx.get("value", 0)),
        }
        if tx.get("gas"):
            params["gas"] = int(tx["gas"])
        return params

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def _fee_fields(self, tx: Dict[str, Any]) -> Dict[str, int]:
        if tx.get("maxFeePerGas"):
            max_fee = int(tx["maxFeePerGas"])
            priority = int(tx.get("maxPriorityFeePerGas") or min(self.priority_fee_wei, max_fee))
            return {"maxFeePerGas": max_fee, "maxPriorityFeePerGas": priority}

        base = await self.gas_price()
        return {
            "maxFeePerGas": base * 2 + self.priority_fee_wei,
            "maxPriorityFeePerGas": self.priority_fee_wei,
        }

    async def is_known(self, tx_hash) -> bool:
        """True if some node has `tx_hash` pending or mined"""
        async def _lookup(w3: AsyncWeb3) -> bool:
            try:
                await w3.eth.get_transaction(tx_hash)
            except TransactionNotFound:
                return False
            return True

        try:
            return await self.pool.with_failover(_lookup, label="eth_getTransactionByHash")
        except TransportFailure as e:
            logger.warning(f"Could not look up {tx_hash_hex(tx_hash)}: {e}")
            return False

    async def send_transaction(self, tx: Dict[str, Any]) -> Dict[str, Any]:
        """
        Sign and submit `tx` ({to, data, value, gas} plus optional EIP-1559
        fee fields), then wait for one confirmation.

        Returns the receipt whatever its status; raises TransactionTimeout if
        none arrives in time.
        """
        async with self._send_lock:
            fees = await self._fee_fields(tx)
            nonce = await self.pool.with_failover(
                lambda w3: w3.eth.get_transaction_count(self.address, "pending"),
                label="eth_getTransactionCount",
            )

            full_tx = {
                "from": self.address,
                "to": Web3.to_checksum_address(tx["to"]),
                "data": tx.get("data", "0x"),
                "value": int(tx.get("value", 0)),
                "gas": int(tx["gas"]),
                "nonce": nonce,
                "chainId": self.chain_id,
                "type": 2,
                **fees,
            }

            signed = self.account.sign_transaction(full_tx)
            # hash is known before broadcast; a lost response must not lose the tx
            tx_hash = signed.hash
            tx_hex = tx_hash_hex(tx_hash)

            try:
                await self.pool.with_failover(
                    lambda w3: w3.eth.send_raw_transaction(signed.raw_transaction),
                    label="eth_sendRawTransaction",
                )
            except TransportFailure as e:
                if not await self.is_known(tx_hash):
                    raise
                logger.warning(
                    f"⚠️ Broadcast of {tx_hex} reported {e.last_error}, but the network has it"
                )

        logger.info(f"📤 Tx sent: {tx_hex} (nonce={nonce})")

        try:
            receipt = await self.pool.with_failover(
                lambda w3: w3.eth.wait_for_transaction_receipt(
                    tx_hash,
                    timeout=self.confirmation_timeout,
                    poll_latency=self.poll_latency,
                ),
                label="wait_for_transaction_receipt",
            )
        except TimeExhausted as e:
            raise TransactionTimeout(
                f"No receipt for {tx_hex} after {self.confirmation_timeout}s", tx_hash=tx_hex
            ) from e

        return receipt
