"""Chain interface: nonce reads, transaction signing and broadcast via Web3."""

import logging
from typing import Any, Mapping, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3, Web3

from .errors import TransactionSubmissionError

logger = logging.getLogger(__name__)


def address_from_key(private_key: str) -> str:
    """Checksummed address of a private key."""
    return Account.from_key(private_key).address


class ChainClient:
    """Async Web3 signer bound to one wallet key."""

    def __init__(
        self,
        node_url: str,
        private_key: str,
        chain_id: int,
        w3: Optional[AsyncWeb3] = None,
    ) -> None:
        self.w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(node_url))
        self.account: LocalAccount = Account.from_key(private_key)
        self.chain_id = chain_id

        logger.info(
            "ChainClient initialized",
            extra={"rpc": node_url, "chain_id": chain_id, "address": self.account.address},
        )

    @property
    def address(self) -> str:
        return self.account.address

    async def get_nonce(self) -> int:
        return await self.w3.eth.get_transaction_count(self.account.address, "pending")

    async def sign_and_send(self, payload: Mapping[str, Any]) -> str:
        """Sign and broadcast ``{to, data, value[, gasPrice]}``, return the tx hash.

        Any failure surfaces the payload and the nonce used.
        """
        nonce: Optional[int] = None
        try:
            nonce = await self.get_nonce()
            logger.info(f"Nonce: {nonce}")

            tx: dict[str, Any] = {
                "from": self.account.address,
                "to": Web3.to_checksum_address(payload["to"]),
                "data": payload.get("data", "0x"),
                "value": int(payload.get("value") or 0),
                "nonce": nonce,
                "chainId": self.chain_id,
            }
            if payload.get("gasPrice"):
                tx["gasPrice"] = int(payload["gasPrice"])
            else:
                tx["gasPrice"] = await self.w3.eth.gas_price
            tx["gas"] = await self.w3.eth.estimate_gas(tx)

            signed = self.account.sign_transaction(tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            logger.error(
                "Transaction signing or broadcasting failed",
                extra={"payload": dict(payload), "nonce": nonce},
            )
            raise TransactionSubmissionError(payload, nonce, e) from e

        return Web3.to_hex(tx_hash)

    def sign_typed_data(self, typed_data: Mapping[str, Any]) -> str:
        """EIP-712 signature over a full typed-data message."""
        signed = self.account.sign_typed_data(full_message=dict(typed_data))
        return Web3.to_hex(signed.signature)

    async def close(self) -> None:
        await self.w3.provider.disconnect()
