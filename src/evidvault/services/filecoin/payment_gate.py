"""Payment/allowance gate in front of durable storage migrations.

Balances live in the Filecoin payments contract, one account per owner.
The operator wallet tops owners up by depositing on their behalf.
"""

from dataclasses import dataclass, field

import structlog
from eth_account import Account
from web3 import Web3
from web3.exceptions import TimeExhausted

from evidvault.abi import get_contract_abi
from evidvault.models.payment_ledger import PaymentEntryStatus, PaymentEntryType
from evidvault.repositories.payment_ledger import PaymentLedgerRepository
from evidvault.services.exceptions import (
    BlockchainConnectionError,
    InsufficientFundsError,
    PermanentError,
    TransactionRevertError,
    TransactionSubmissionError,
    TransactionTimeoutError,
)

logger = structlog.get_logger()


@dataclass
class GateStatus:
    """Live readiness of one owner's payment account."""

    owner_address: str
    is_ready: bool
    balance: int
    minimum_required: int
    token: str


@dataclass
class SetupResult:
    """Outcome of set_up()."""

    is_ready: bool
    message: str
    status: GateStatus
    transactions: list[str] = field(default_factory=list)


class PaymentGate:
    """Per-owner balance gate backed by the payments contract.

    The readiness flag is cached per owner for reporting, but every gating
    decision re-reads the live balance because funding happens out of band.
    """

    def __init__(
        self,
        w3: Web3,
        payments_address: str,
        token_address: str,
        minimum_balance: int,
        deposit_amount: int,
        operator_private_key: str = "",
        token_symbol: str = "USDFC",
        transaction_timeout: int = 180,
        service_address: str = "",
        rate_allowance: int = 0,
        lockup_allowance: int = 0,
        max_lockup_period: int = 86400,
    ):
        """Initialize payment gate.

        Args:
            w3: Web3 instance connected to the Filecoin EVM RPC
            payments_address: Payments contract address
            token_address: ERC-20 token used for storage payments
            minimum_balance: Minimum available funds in base units (MIN_BALANCE)
            deposit_amount: Default top-up in base units (DEPOSIT_AMOUNT)
            operator_private_key: Key of the wallet that funds deposits
            token_symbol: Display symbol for the token
            transaction_timeout: Max wait for a receipt in seconds
            service_address: Storage service the operator approves to draw payments
                (empty disables the approval step)
            rate_allowance: Per-epoch rate the service may charge, base units
            lockup_allowance: Total lockup the service may reserve, base units
            max_lockup_period: Longest lockup the service may request, in epochs
        """
        self.w3 = w3
        self.payments_address = Web3.to_checksum_address(payments_address)
        self.token_address = Web3.to_checksum_address(token_address)
        self.minimum_balance = minimum_balance
        self.deposit_amount = deposit_amount
        self.token_symbol = token_symbol
        self.transaction_timeout = transaction_timeout

        self.payments = self.w3.eth.contract(
            address=self.payments_address, abi=get_contract_abi("Payments")
        )
        self.token = self.w3.eth.contract(address=self.token_address, abi=get_contract_abi("ERC20"))

        self.operator_private_key = operator_private_key
        self.operator_address = (
            Account.from_key(operator_private_key).address if operator_private_key else None
        )
        self.service_address = (
            Web3.to_checksum_address(service_address) if service_address else None
        )
        self.rate_allowance = rate_allowance
        self.lockup_allowance = lockup_allowance
        self.max_lockup_period = max_lockup_period
        self._ready: dict[str, bool] = {}

    def is_ready_cached(self, owner_address: str) -> bool | None:
        """Last derived readiness for owner (None if never checked)."""
        return self._ready.get(owner_address.lower())

    async def check_status(self, owner_address: str) -> GateStatus:
        """Read the owner's available funds from the payments contract.

        Raises:
            ValueError: owner_address is not a valid address
            BlockchainConnectionError: RPC call failed or timed out
        """
        owner = Web3.to_checksum_address(owner_address)
        try:
            funds, lockup_current, *_ = self.payments.functions.accounts(
                self.token_address, owner
            ).call()
        except Exception as e:
            logger.error("payment_gate.balance_check_failed", owner=owner, error=str(e))
            raise BlockchainConnectionError(f"Balance check failed for {owner}: {e}") from e

        available = max(0, int(funds) - int(lockup_current))
        is_ready = available >= self.minimum_balance
        self._ready[owner.lower()] = is_ready

        logger.debug(
            "payment_gate.status",
            owner=owner,
            available=available,
            minimum_required=self.minimum_balance,
            is_ready=is_ready,
        )
        return GateStatus(
            owner_address=owner.lower(),
            is_ready=is_ready,
            balance=available,
            minimum_required=self.minimum_balance,
            token=self.token_symbol,
        )

    async def ensure_ready(self, owner_address: str) -> GateStatus:
        """Live check that raises when the owner cannot pay for a migration.

        Raises:
            InsufficientFundsError: Available funds below the minimum
        """
        status = await self.check_status(owner_address)
        if not status.is_ready:
            raise InsufficientFundsError(
                f"Insufficient {status.token} balance for {status.owner_address}: "
                f"{status.balance} < {status.minimum_required}. Top up the payments account.",
                balance=status.balance,
                minimum_required=status.minimum_required,
            )
        return status

    async def set_up(
        self, owner_address: str, payments: PaymentLedgerRepository
    ) -> SetupResult:
        """Approve, deposit and authorize the storage service as needed.

        Idempotent: an owner that is already funded, with the service already
        approved at the configured allowances, gets a successful result and no
        transaction is sent.

        Args:
            owner_address: Owner to fund
            payments: Ledger repository receiving one entry per transaction

        Raises:
            PermanentError: No operator key configured
            BlockchainConnectionError: Allowance or approval read failed
            TransactionRevertError / TransactionTimeoutError / TransactionSubmissionError
        """
        status = await self.check_status(owner_address)
        await payments.append(
            owner_address=status.owner_address,
            entry_type=PaymentEntryType.BALANCE_CHECK,
            amount=status.balance,
            token=self.token_symbol,
            status=PaymentEntryStatus.CONFIRMED,
            metadata={"minimum_required": str(status.minimum_required)},
        )

        needs_deposit = not status.is_ready
        needs_approval = self._needs_service_approval()

        if not needs_deposit and not needs_approval:
            logger.info("payment_gate.setup_noop", owner=status.owner_address)
            return SetupResult(
                is_ready=True,
                message="Payments already set up; no transaction needed",
                status=status,
            )

        if not self.operator_address:
            raise PermanentError("Operator key not configured; cannot fund payments account")

        transactions: list[str] = []
        if needs_deposit:
            transactions.extend(await self._deposit(owner_address, status, payments))
        if needs_approval:
            tx_hash = await self._send_logged(
                self.payments.functions.setOperatorApproval(
                    self.token_address,
                    self.service_address,
                    True,
                    self.rate_allowance,
                    self.lockup_allowance,
                    self.max_lockup_period,
                ),
                payments,
                status.owner_address,
                PaymentEntryType.SERVICE_APPROVAL,
                0,
                {
                    "service": self.service_address,
                    "rate_allowance": str(self.rate_allowance),
                    "lockup_allowance": str(self.lockup_allowance),
                    "max_lockup_period": self.max_lockup_period,
                },
            )
            transactions.append(tx_hash)

        status = await self.check_status(owner_address)
        if not status.is_ready:
            message = "Deposit confirmed but balance still below minimum"
        elif needs_deposit:
            message = "Payments account funded"
        else:
            message = "Storage service approved"
        logger.info(
            "payment_gate.setup_completed",
            owner=status.owner_address,
            is_ready=status.is_ready,
            transactions=transactions,
        )
        return SetupResult(
            is_ready=status.is_ready, message=message, status=status, transactions=transactions
        )

    def _needs_service_approval(self) -> bool:
        """True when the service is not approved at the configured allowances.

        Skipped (False) when no service address or no operator is configured.
        """
        if not self.service_address or not self.operator_address:
            return False
        try:
            approved, rate, lockup, _, _, max_period = self.payments.functions.operatorApprovals(
                self.token_address, self.operator_address, self.service_address
            ).call()
        except Exception as e:
            logger.error("payment_gate.approval_check_failed", error=str(e))
            raise BlockchainConnectionError(f"Service approval check failed: {e}") from e

        return (
            not approved
            or int(rate) < self.rate_allowance
            or int(lockup) < self.lockup_allowance
            or int(max_period) < self.max_lockup_period
        )

    async def _deposit(
        self, owner_address: str, status: GateStatus, payments: PaymentLedgerRepository
    ) -> list[str]:
        amount = max(self.deposit_amount, status.minimum_required - status.balance)
        owner = Web3.to_checksum_address(owner_address)
        transactions: list[str] = []

        try:
            allowance = self.token.functions.allowance(
                self.operator_address, self.payments_address
            ).call()
        except Exception as e:
            logger.error("payment_gate.allowance_check_failed", error=str(e))
            raise BlockchainConnectionError(f"Token allowance check failed: {e}") from e

        if int(allowance) < amount:
            tx_hash = await self._send_logged(
                self.token.functions.approve(self.payments_address, amount),
                payments,
                status.owner_address,
                PaymentEntryType.APPROVAL,
                amount,
                {"spender": self.payments_address},
            )
            transactions.append(tx_hash)

        tx_hash = await self._send_logged(
            self.payments.functions.deposit(self.token_address, owner, amount),
            payments,
            status.owner_address,
            PaymentEntryType.DEPOSIT,
            amount,
            {"operator": self.operator_address},
        )
        transactions.append(tx_hash)
        return transactions

    async def _send_logged(
        self,
        contract_call,
        payments: PaymentLedgerRepository,
        owner_address: str,
        entry_type: PaymentEntryType,
        amount: int,
        metadata: dict,
    ) -> str:
        """Sign, send and confirm a transaction, appending a ledger entry for it."""
        try:
            nonce = self.w3.eth.get_transaction_count(self.operator_address, "pending")
            transaction = contract_call.build_transaction(
                {
                    "from": self.operator_address,
                    "nonce": nonce,
                    "chainId": self.w3.eth.chain_id,
                }
            )
            signed_txn = self.w3.eth.account.sign_transaction(
                transaction, private_key=self.operator_private_key
            )
            tx_hash = self.w3.eth.send_raw_transaction(signed_txn.raw_transaction)
        except Exception as e:
            logger.error(
                "payment_gate.submission_failed", entry_type=entry_type.value, error=str(e)
            )
            raise TransactionSubmissionError(f"Transaction submission failed: {e}") from e

        tx_hash_hex = Web3.to_hex(tx_hash)
        logger.info(
            "payment_gate.transaction_submitted", tx_hash=tx_hash_hex, type=entry_type.value
        )

        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.transaction_timeout
            )
        except TimeExhausted as e:
            await payments.append(
                owner_address=owner_address,
                entry_type=entry_type,
                amount=amount,
                token=self.token_symbol,
                status=PaymentEntryStatus.PENDING,
                transaction_ref=tx_hash_hex,
                metadata=metadata,
            )
            raise TransactionTimeoutError(f"Transaction confirmation timeout: {tx_hash_hex}") from e

        confirmed = receipt["status"] == 1
        await payments.append(
            owner_address=owner_address,
            entry_type=entry_type,
            amount=amount,
            token=self.token_symbol,
            status=PaymentEntryStatus.CONFIRMED if confirmed else PaymentEntryStatus.FAILED,
            transaction_ref=tx_hash_hex,
            metadata={**metadata, "block_number": receipt.get("blockNumber")},
        )
        if not confirmed:
            raise TransactionRevertError(f"Transaction reverted: {tx_hash_hex}")
        return tx_hash_hex
