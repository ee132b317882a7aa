"""
Shared constants for the contract event indexer.

ABI word sizes and the canonical signatures of the monitored events.
"""

# ---------------------------------------------------------------------------
# ABI encoding
# ---------------------------------------------------------------------------

WORD_SIZE_BYTES = 32  # one ABI word / topic slot
ADDRESS_SIZE_BYTES = 20  # addresses occupy the low-order bytes of a word
UINT256_MAX = 2**256 - 1

# ---------------------------------------------------------------------------
# Monitored events (ERC-20)
# ---------------------------------------------------------------------------

# event name -> (canonical signature, indexed param types, data param types)
EVENT_SIGNATURES: dict[str, tuple[str, tuple[str, ...], tuple[str, ...]]] = {
    # Transfer(address indexed from, address indexed to, uint256 value)
    "Transfer": ("Transfer(address,address,uint256)", ("address", "address"), ("uint256",)),
    # Approval(address indexed owner, address indexed spender, uint256 value)
    "Approval": ("Approval(address,address,uint256)", ("address", "address"), ("uint256",)),
}
