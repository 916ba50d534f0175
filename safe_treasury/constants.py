"""
Shared constants for the Safe treasury tools.

This module provides a single source of truth for addresses, ABIs and tuning
values that are used by both the proposal tool and the refill job.
"""

from typing import Any, Dict, List

ZERO_ADDRESS = "0x" + "0" * 40

# Base mainnet deployments
MOR_TOKEN_ADDRESS = "0x7431aDa8a591C955a994a21710752EF9b882b8e3"
DEFAULT_ALLOWANCE_MODULE_ADDRESS = "0xCFbFaC74C26F8647cBDb8c5caf80BB5b32E43134"
DEFAULT_TX_SERVICE_URL = "https://safe-transaction-base.safe.global"
SAFE_APP_QUEUE_URL = "https://app.safe.global/transactions/queue?safe=base:{safe}"

DEFAULT_MOR_LOW_THRESHOLD = "20"
DEFAULT_MOR_REFILL_AMOUNT = "30"
DEFAULT_ETH_LOW_THRESHOLD = "0.01"
DEFAULT_ETH_REFILL_AMOUNT = "0.03"

DEFAULT_KEYCHAIN_ACCOUNT = "everclaw-agent"
DEFAULT_KEYCHAIN_SERVICE = "everclaw-wallet-key"
DEFAULT_KEYCHAIN_DB = "~/Library/Keychains/everclaw.keychain-db"
DEFAULT_SAFE_DIR = "~/morpheus"
LOCK_FILE_NAME = ".refill.lock"

# Fusaka upgrade enforces a hard 16,777,216 gas limit per transaction (2^24).
MAX_TRANSACTION_GAS = 16_777_216

# Balance read retry policy (not exposed as configuration)
READ_MAX_ATTEMPTS = 3
READ_BASE_DELAY_SECONDS = 1.0

RECEIPT_TIMEOUT_SECONDS = 180
RELAY_TIMEOUT_SECONDS = 30
ALERT_TIMEOUT_SECONDS = 10
PENDING_LIST_LIMIT = 10

ALERT_PREFIX = "[safe-agent-treasury]"

SAFE_TX_TYPE = (
    "SafeTx(address to,uint256 value,bytes data,uint8 operation,uint256 safeTxGas,"
    "uint256 baseGas,uint256 gasPrice,address gasToken,address refundReceiver,uint256 nonce)"
)

SAFE_ABI: List[Dict[str, Any]] = [
    {
        "inputs": [],
        "name": "nonce",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "getThreshold",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "getOwners",
        "outputs": [{"internalType": "address[]", "name": "", "type": "address[]"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "domainSeparator",
        "outputs": [{"internalType": "bytes32", "name": "", "type": "bytes32"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "uint256", "name": "_threshold", "type": "uint256"}
        ],
        "name": "changeThreshold",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

ERC20_ABI: List[Dict[str, Any]] = [
    {
        "constant": True,
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

ALLOWANCE_MODULE_ABI: List[Dict[str, Any]] = [
    {
        "inputs": [
            {"internalType": "address", "name": "safe", "type": "address"},
            {"internalType": "address", "name": "token", "type": "address"},
            {"internalType": "address payable", "name": "to", "type": "address"},
            {"internalType": "uint96", "name": "amount", "type": "uint96"},
            {"internalType": "address", "name": "paymentToken", "type": "address"},
            {"internalType": "uint96", "name": "payment", "type": "uint96"},
            {"internalType": "address", "name": "delegate", "type": "address"},
            {"internalType": "bytes", "name": "signature", "type": "bytes"},
        ],
        "name": "executeAllowanceTransfer",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "address", "name": "safe", "type": "address"},
            {"internalType": "address", "name": "delegate", "type": "address"},
            {"internalType": "address", "name": "token", "type": "address"},
        ],
        "name": "getTokenAllowance",
        "outputs": [{"internalType": "uint256[5]", "name": "", "type": "uint256[5]"}],
        "stateMutability": "view",
        "type": "function",
    },
]
