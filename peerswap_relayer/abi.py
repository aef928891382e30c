"""
Contract ABIs for the escrow factory and the source/destination escrows.

Event and function signatures must match the deployed contracts bit for bit.
Note the contracts spell the counterparty field ``fullfiller``.
"""

EXECUTION_DATA_COMPONENTS = [
    {"name": "orderHash", "type": "bytes32"},
    {"name": "hashlock", "type": "bytes32"},
    {"name": "asker", "type": "address"},
    {"name": "fullfiller", "type": "address"},
    {"name": "srcToken", "type": "address"},
    {"name": "dstToken", "type": "address"},
    {"name": "srcChainId", "type": "uint256"},
    {"name": "dstChainId", "type": "uint256"},
    {"name": "askerAmount", "type": "uint256"},
    {"name": "fullfillerAmount", "type": "uint256"},
    {"name": "platformFee", "type": "uint256"},
    {"name": "feeCollector", "type": "address"},
    {"name": "timelocks", "type": "uint256"},
    {"name": "parameters", "type": "bytes"},
]


def _execution_data(name: str = "executionData") -> dict:
    return {"name": name, "type": "tuple", "components": EXECUTION_DATA_COMPONENTS}


_ESCROW_ERRORS = [
    {"type": "error", "name": name, "inputs": []}
    for name in (
        "InvalidCaller",
        "InvalidSecret",
        "InvalidTime",
        "InvalidExecutionData",
        "NativeTokenSendingFailure",
        "InsufficientBalance",
        "EscrowNotActive",
        "EscrowAlreadyInitialized",
        "EscrowNotInitialized",
        "InsufficientTokenBalance",
        "InvalidWithdrawalAmount",
        "OnlyFactory",
        "InvalidFee",
        "InvalidFeeCollector",
        "InsufficientGasFee",
        "InvalidRelayer",
        "OnlyRelayer",
    )
]

_WITHDRAW = {
    "inputs": [{"name": "secret", "type": "bytes32"}, _execution_data()],
    "name": "withdraw",
    "outputs": [],
    "stateMutability": "nonpayable",
    "type": "function",
}

_EXECUTION_DATA_VIEW = {
    "inputs": [],
    "name": "executionData",
    "outputs": [_execution_data("")],
    "stateMutability": "view",
    "type": "function",
}

_IS_ACTIVE = {
    "inputs": [],
    "name": "isActive",
    "outputs": [{"name": "", "type": "bool"}],
    "stateMutability": "view",
    "type": "function",
}


ESCROW_FACTORY_ABI = [
    {
        "inputs": [_execution_data()],
        "name": "createSrcEscrow",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
    {
        "inputs": [_execution_data()],
        "name": "addressOfEscrowSrc",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [_execution_data()],
        "name": "addressOfEscrowDst",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "srcEscrowAddress", "type": "address"},
            {"name": "fulfillerAddress", "type": "address"},
        ],
        "name": "setFulfiller",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "relayer",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [dict(_execution_data("srcExecutionData"), indexed=False)],
        "name": "SrcEscrowCreated",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"name": "escrow", "type": "address", "indexed": False},
            {"name": "hashlock", "type": "bytes32", "indexed": False},
            {"name": "asker", "type": "address", "indexed": False},
        ],
        "name": "DstEscrowCreated",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"name": "srcEscrowAddress", "type": "address", "indexed": True},
            {"name": "fulfillerAddress", "type": "address", "indexed": True},
        ],
        "name": "FulfillerSet",
        "type": "event",
    },
]

ESCROW_SRC_ABI = [_WITHDRAW, _EXECUTION_DATA_VIEW, _IS_ACTIVE, *_ESCROW_ERRORS]

ESCROW_DST_ABI = [
    {
        "anonymous": False,
        "inputs": [
            {"name": "secret", "type": "bytes32", "indexed": False},
            {"name": "hashlock", "type": "bytes32", "indexed": False},
        ],
        "name": "DstSecretRevealed",
        "type": "event",
    },
    _WITHDRAW,
    _EXECUTION_DATA_VIEW,
    _IS_ACTIVE,
    *_ESCROW_ERRORS,
]
