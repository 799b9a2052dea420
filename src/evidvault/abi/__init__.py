"""Contract ABIs used by the payment gate.

Payments.json and ERC20.json hold only the functions the gate calls
(accounts, deposit, operatorApprovals, setOperatorApproval, allowance,
approve, balanceOf). Both are shipped as package data and parsed once per
process.
"""

import json
from functools import lru_cache
from pathlib import Path

_ABI_DIR = Path(__file__).parent


@lru_cache(maxsize=None)
def _load(contract_name: str) -> tuple[dict, ...]:
    abi_path = _ABI_DIR / f"{contract_name}.json"
    if not abi_path.is_file():
        raise FileNotFoundError(f"No ABI bundled for {contract_name!r} ({abi_path})")
    return tuple(json.loads(abi_path.read_text()))


def get_contract_abi(contract_name: str) -> list[dict]:
    """Return the ABI for contract_name ("Payments" or "ERC20").

    Raises:
        FileNotFoundError: No ABI file is bundled under that name
    """
    return list(_load(contract_name))
