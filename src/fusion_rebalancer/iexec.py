"""
iExec confidential compute: batch mode inside the worker, and the deal
launcher the server uses to start one.

Batch mode reads the user's key from protected data, runs one rebalance and
always leaves ``computed.json`` behind as its completion signal.
"""

from __future__ import annotations

import json
import logging
import secrets
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from eth_account import Account
from web3 import AsyncWeb3, Web3

from .config import Settings
from .errors import DealLaunchError
from .models import DealHandle, RebalanceReport, Strategy
from .rebalancer import Rebalancer, summarize

logger = logging.getLogger(__name__)

PRIVATE_KEY_FIELD = "private-key"


# ── Batch mode ────────────────────────────────────────────────────────────────

class ProtectedDataReader:
    """Reads values from the decrypted protected-data archive."""

    def __init__(self, iexec_in: str, dataset_filename: str) -> None:
        self.path = Path(iexec_in) / dataset_filename

    def get_value(self, key: str) -> str:
        if not self.path.is_file():
            raise FileNotFoundError(f"Protected data not found at {self.path}")
        with zipfile.ZipFile(self.path) as archive:
            try:
                raw = archive.read(key)
            except KeyError:
                raise KeyError(f"Protected data has no field {key!r}") from None
        return raw.decode("utf-8").strip()


async def run_batch(
    output_dir: str,
    rebalancer: Rebalancer,
    reader: ProtectedDataReader,
) -> Optional[RebalanceReport]:
    """Run one rebalance with the protected key.

    Writes ``result.txt`` on success and ``computed.json`` in every case.
    """
    out = Path(output_dir)
    computed: dict[str, Any] = {}
    report = None

    out.mkdir(parents=True, exist_ok=True)
    try:
        logger.info("Running in iExec mode - deserializing protected data")
        private_key = reader.get_value(PRIVATE_KEY_FIELD)
        if not private_key:
            raise ValueError("Failed to retrieve private key from protected data")
        logger.info("Successfully retrieved protected private key")

        report = await rebalancer.rebalance(private_key)

        result_path = out / "result.txt"
        summary = json.dumps(summarize(report), sort_keys=True)
        result_path.write_text(
            f"Rebalancing completed at {datetime.now(timezone.utc).isoformat()}\n{summary}\n"
        )
        computed = {"deterministic-output-path": str(result_path)}
    except Exception as e:
        logger.error(f"Error in iExec batch mode: {e}", exc_info=True)
        computed = {
            "deterministic-output-path": str(out),
            "error-message": f"Rebalancing failed: {e}",
        }
    finally:
        (out / "computed.json").write_text(json.dumps(computed))

    return report


# ── Deal launcher ─────────────────────────────────────────────────────────────

NULL_ADDRESS = "0x" + "0" * 40
NULL_BYTES32 = "0x" + "0" * 64

ORDER_TYPES: dict[str, list[dict[str, str]]] = {
    "AppOrder": [
        {"name": "app", "type": "address"},
        {"name": "appprice", "type": "uint256"},
        {"name": "volume", "type": "uint256"},
        {"name": "tag", "type": "bytes32"},
        {"name": "datasetrestrict", "type": "address"},
        {"name": "workerpoolrestrict", "type": "address"},
        {"name": "requesterrestrict", "type": "address"},
        {"name": "salt", "type": "bytes32"},
    ],
    "DatasetOrder": [
        {"name": "dataset", "type": "address"},
        {"name": "datasetprice", "type": "uint256"},
        {"name": "volume", "type": "uint256"},
        {"name": "tag", "type": "bytes32"},
        {"name": "apprestrict", "type": "address"},
        {"name": "workerpoolrestrict", "type": "address"},
        {"name": "requesterrestrict", "type": "address"},
        {"name": "salt", "type": "bytes32"},
    ],
    "WorkerpoolOrder": [
        {"name": "workerpool", "type": "address"},
        {"name": "workerpoolprice", "type": "uint256"},
        {"name": "volume", "type": "uint256"},
        {"name": "tag", "type": "bytes32"},
        {"name": "category", "type": "uint256"},
        {"name": "trust", "type": "uint256"},
        {"name": "apprestrict", "type": "address"},
        {"name": "datasetrestrict", "type": "address"},
        {"name": "requesterrestrict", "type": "address"},
        {"name": "salt", "type": "bytes32"},
    ],
    "RequestOrder": [
        {"name": "app", "type": "address"},
        {"name": "appmaxprice", "type": "uint256"},
        {"name": "dataset", "type": "address"},
        {"name": "datasetmaxprice", "type": "uint256"},
        {"name": "workerpool", "type": "address"},
        {"name": "workerpoolmaxprice", "type": "uint256"},
        {"name": "requester", "type": "address"},
        {"name": "volume", "type": "uint256"},
        {"name": "tag", "type": "bytes32"},
        {"name": "category", "type": "uint256"},
        {"name": "trust", "type": "uint256"},
        {"name": "beneficiary", "type": "address"},
        {"name": "callback", "type": "address"},
        {"name": "params", "type": "string"},
        {"name": "salt", "type": "bytes32"},
    ],
}

EIP712_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]


def _abi_tuple(order_type: str) -> dict[str, Any]:
    components = [{"name": f["name"], "type": f["type"]} for f in ORDER_TYPES[order_type]]
    components.append({"name": "sign", "type": "bytes"})
    return {"name": order_type[0].lower() + order_type[1:], "type": "tuple", "components": components}


IEXEC_HUB_ABI = [
    {
        "type": "function",
        "name": "matchOrders",
        "inputs": [_abi_tuple(t) for t in ("AppOrder", "DatasetOrder", "WorkerpoolOrder", "RequestOrder")],
        "outputs": [{"name": "", "type": "bytes32"}],
        "stateMutability": "nonpayable",
    },
    {
        "type": "event",
        "name": "OrdersMatched",
        "anonymous": False,
        "inputs": [
            {"name": "dealid", "type": "bytes32", "indexed": False},
            {"name": "appHash", "type": "bytes32", "indexed": False},
            {"name": "datasetHash", "type": "bytes32", "indexed": False},
            {"name": "workerpoolHash", "type": "bytes32", "indexed": False},
            {"name": "requestHash", "type": "bytes32", "indexed": False},
            {"name": "volume", "type": "uint256", "indexed": False},
        ],
    },
]


class IExecDealLauncher:
    """Creates a one-task iExec deal running the rebalancer app on a user's
    protected data. Every order is signed by the server wallet.
    """

    def __init__(self, settings: Settings, w3: Optional[AsyncWeb3] = None) -> None:
        self.settings = settings
        self.w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(settings.iexec_rpc_url))
        self.account = Account.from_key(settings.private_key) if settings.private_key else None

    @property
    def configured(self) -> bool:
        s = self.settings
        return bool(s.iexec_app_address and s.iexec_workerpool_address and self.account is not None)

    def _domain(self) -> dict[str, Any]:
        return {
            "name": "iExecODB",
            "version": "5.0.0",
            "chainId": self.settings.iexec_chain_id,
            "verifyingContract": Web3.to_checksum_address(self.settings.iexec_hub_address),
        }

    def _sign(self, order_type: str, order: dict[str, Any]) -> dict[str, Any]:
        typed = {
            "types": {"EIP712Domain": EIP712_DOMAIN_TYPE, order_type: ORDER_TYPES[order_type]},
            "primaryType": order_type,
            "domain": self._domain(),
            "message": order,
        }
        signed = self.account.sign_typed_data(full_message=typed)
        return {**order, "sign": bytes(signed.signature)}

    def build_orders(self, strategy: Strategy) -> tuple[dict[str, Any], ...]:
        s = self.settings
        app = Web3.to_checksum_address(s.iexec_app_address)
        dataset = Web3.to_checksum_address(strategy.protectedDataAddress)
        workerpool = Web3.to_checksum_address(s.iexec_workerpool_address)
        requester = self.account.address

        def salt() -> str:
            return "0x" + secrets.token_hex(32)

        apporder = {
            "app": app, "appprice": 0, "volume": 1, "tag": NULL_BYTES32,
            "datasetrestrict": NULL_ADDRESS, "workerpoolrestrict": NULL_ADDRESS,
            "requesterrestrict": NULL_ADDRESS, "salt": salt(),
        }
        datasetorder = {
            "dataset": dataset, "datasetprice": 0, "volume": 1, "tag": NULL_BYTES32,
            "apprestrict": NULL_ADDRESS, "workerpoolrestrict": NULL_ADDRESS,
            "requesterrestrict": NULL_ADDRESS, "salt": salt(),
        }
        workerpoolorder = {
            "workerpool": workerpool, "workerpoolprice": 0, "volume": 1, "tag": NULL_BYTES32,
            "category": s.iexec_category, "trust": 0, "apprestrict": NULL_ADDRESS,
            "datasetrestrict": NULL_ADDRESS, "requesterrestrict": NULL_ADDRESS, "salt": salt(),
        }
        requestorder = {
            "app": app, "appmaxprice": 0, "dataset": dataset, "datasetmaxprice": 0,
            "workerpool": workerpool, "workerpoolmaxprice": 0, "requester": requester,
            "volume": 1, "tag": NULL_BYTES32, "category": s.iexec_category, "trust": 0,
            "beneficiary": requester, "callback": NULL_ADDRESS,
            "params": json.dumps(
                {
                    "iexec_result_storage_provider": "ipfs",
                    "iexec_result_storage_proxy": s.iexec_result_proxy,
                }
            ),
            "salt": salt(),
        }
        return (
            self._sign("AppOrder", apporder),
            self._sign("DatasetOrder", datasetorder),
            self._sign("WorkerpoolOrder", workerpoolorder),
            self._sign("RequestOrder", requestorder),
        )

    async def launch(self, strategy: Strategy) -> DealHandle:
        if not self.configured:
            raise DealLaunchError("iExec app, workerpool or server key not configured")

        dataset = Web3.to_checksum_address(strategy.protectedDataAddress)
        code = await self.w3.eth.get_code(dataset)
        if not code:
            raise DealLaunchError(
                f"Protected data not found or not accessible: {strategy.protectedDataAddress}"
            )
        logger.info(f"Protected data verified: {dataset}")

        hub = self.w3.eth.contract(
            address=Web3.to_checksum_address(self.settings.iexec_hub_address),
            abi=IEXEC_HUB_ABI,
        )
        orders = self.build_orders(strategy)

        try:
            nonce = await self.w3.eth.get_transaction_count(self.account.address, "pending")
            tx = await hub.functions.matchOrders(*orders).build_transaction(
                {
                    "from": self.account.address,
                    "nonce": nonce,
                    "gasPrice": await self.w3.eth.gas_price,
                    "chainId": self.settings.iexec_chain_id,
                }
            )
            signed = self.account.sign_transaction(tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
            receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash)
        except Exception as e:
            raise DealLaunchError(f"matchOrders failed: {e}") from e

        if receipt["status"] != 1:
            raise DealLaunchError(f"matchOrders reverted: {Web3.to_hex(tx_hash)}")

        events = hub.events.OrdersMatched().process_receipt(receipt)
        if not events:
            raise DealLaunchError(f"No OrdersMatched event in {Web3.to_hex(tx_hash)}")

        return DealHandle(
            deal_id=Web3.to_hex(events[0]["args"]["dealid"]),
            tx_hash=Web3.to_hex(tx_hash),
        )

    async def close(self) -> None:
        await self.w3.provider.disconnect()
