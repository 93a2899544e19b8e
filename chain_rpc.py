# chain_rpc.py
# JSON-RPC side of the storage tools: endpoint config, address checks and the
# live slot fetcher handed to SlotAccessor.
import os
import sys
from typing import Optional, Union

from web3 import Web3

from slot_accessor import SlotAccessor

# RPC configuration (override via environment: RPC_URL / RPC_TIMEOUT, or --rpc)
RPC_URL = os.getenv("RPC_URL", "https://mainnet.infura.io/v3/your_api_key")
RPC_TIMEOUT = int(os.getenv("RPC_TIMEOUT", "30"))

# 31337 is the default chain id of anvil and hardhat dev nodes
NETWORKS = {
    1: "Ethereum Mainnet",
    10: "Optimism",
    56: "BNB Smart Chain",
    137: "Polygon",
    8453: "Base",
    17000: "Holesky Testnet",
    31337: "Local dev node",
    42161: "Arbitrum One",
    11155111: "Sepolia Testnet",
}


def network_name(chain_id: int) -> str:
    return NETWORKS.get(chain_id, "unlisted network")


def checksum(addr: str) -> str:
    if not Web3.is_address(addr):
        print(f"❌ Invalid contract address: {addr}"); sys.exit(2)
    return Web3.to_checksum_address(addr)


def warn_placeholder(url: str) -> None:
    if "your_api_key" in url:
        print("⚠️ RPC_URL still uses Infura placeholder — replace with a real key.")


def connect(url: str, timeout: int = RPC_TIMEOUT) -> Web3:
    """Live connection for slot reads; exits 1 when the endpoint does not answer."""
    w3 = Web3(Web3.HTTPProvider(url, request_kwargs={"timeout": timeout}))
    if not w3.is_connected():
        print(f"❌ No answer from RPC at {url}. Set RPC_URL / --rpc, or read a dump with --dump --offline.")
        sys.exit(1)
    return w3


class Web3SlotFetcher:
    """Fetch capability reading ``eth_getStorageAt`` for one contract at one block."""

    def __init__(self, w3: Web3, address: str, block: Optional[Union[int, str]] = None):
        self.w3 = w3
        self.address = Web3.to_checksum_address(address)
        self.block = "latest" if block is None else block

    def fetch(self, slot: int) -> bytes:
        return self.w3.eth.get_storage_at(self.address, slot, block_identifier=self.block)


def make_accessor(
    w3: Optional[Web3],
    address: str,
    block: Optional[Union[int, str]] = None,
    dump: Optional[bytes] = None,
) -> SlotAccessor:
    """Live accessor when ``w3`` is given, dump-only (offline) when it is None."""
    fetcher = Web3SlotFetcher(w3, address, block) if w3 is not None else None
    return SlotAccessor(fetcher=fetcher, dump=dump)
