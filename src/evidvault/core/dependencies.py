"""Service wiring shared by the API lifespan and the CLI."""

from dataclasses import dataclass
from datetime import timedelta

from web3 import Web3

from evidvault.core.config import Settings
from evidvault.services.filecoin.direct_deal import DirectDealClient
from evidvault.services.filecoin.migrator import (
    DirectDealStrategy,
    DurableStorageMigrator,
    PrimaryStorageStrategy,
)
from evidvault.services.filecoin.payment_gate import PaymentGate
from evidvault.services.filecoin.storage_client import StorageProviderClient
from evidvault.services.ipfs.pinata_client import PinataClient
from evidvault.services.ledger.audit_logger import AuditHashLogger
from evidvault.services.ledger.hedera_client import HederaClient
from evidvault.services.ledger.mirror_verifier import MirrorNodeVerifier
from evidvault.services.ledger.topic_registry import TopicRegistry
from evidvault.uow import UowFactory
from evidvault.workers.migration_worker import MigrationOrchestrator


@dataclass
class Services:
    """Long-lived service instances, built once per process."""

    pin_client: PinataClient
    storage_client: StorageProviderClient
    gate: PaymentGate
    migrator: DurableStorageMigrator
    orchestrator: MigrationOrchestrator
    topic_registry: TopicRegistry
    audit_logger: AuditHashLogger
    verifier: MirrorNodeVerifier


def build_services(
    settings: Settings, uow_factory: UowFactory, w3: Web3 | None = None
) -> Services:
    """Construct every pipeline service from settings.

    Args:
        settings: Application settings
        uow_factory: UnitOfWork factory
        w3: Web3 instance (defaults to an HTTPProvider on FILECOIN_RPC_URL with
            the setup timeout applied to every RPC call)
    """
    if w3 is None:
        w3 = Web3(
            Web3.HTTPProvider(
                settings.filecoin_rpc_url,
                request_kwargs={"timeout": settings.setup_timeout_seconds},
            )
        )

    pin_client = PinataClient(
        jwt_token=settings.pinata_jwt,
        gateway_domain=settings.pinata_gateway,
        fallback_gateways=settings.fallback_gateways_list,
        upload_timeout=settings.pin_upload_timeout_seconds,
        download_timeout=settings.pin_download_timeout_seconds,
    )
    gate = PaymentGate(
        w3=w3,
        payments_address=settings.payments_contract_address,
        token_address=settings.payment_token_address,
        minimum_balance=settings.min_balance_base_units,
        deposit_amount=settings.deposit_amount_base_units,
        operator_private_key=settings.filecoin_private_key,
        token_symbol=settings.payment_token_symbol,
        transaction_timeout=settings.transaction_timeout_seconds,
        service_address=settings.storage_service_address,
        rate_allowance=settings.rate_allowance_base_units,
        lockup_allowance=settings.lockup_allowance_base_units,
        max_lockup_period=settings.max_lockup_period,
    )
    storage_client = StorageProviderClient(
        base_url=settings.storage_provider_url,
        api_token=settings.storage_provider_token,
        deal_duration_seconds=settings.deal_duration_seconds,
        timeout=settings.storage_timeout_seconds,
    )
    migrator = DurableStorageMigrator(
        pin_client=pin_client,
        gate=gate,
        strategies=[
            PrimaryStorageStrategy(storage_client),
            DirectDealStrategy(
                DirectDealClient(
                    rpc_url=settings.filecoin_rpc_url,
                    client_address=gate.operator_address or "",
                    method=settings.direct_deal_method,
                    timeout=settings.storage_timeout_seconds,
                ),
                deal_duration_seconds=settings.deal_duration_seconds,
            ),
        ],
        token_symbol=settings.payment_token_symbol,
    )
    orchestrator = MigrationOrchestrator(
        uow_factory=uow_factory,
        migrator=migrator,
        gate=gate,
        migration_timeout=settings.migration_timeout_seconds,
        stale_after=timedelta(seconds=settings.stale_upload_seconds),
    )

    ledger_client = HederaClient(
        gateway_url=settings.ledger_gateway_url,
        api_token=settings.ledger_gateway_token,
        timeout=settings.ledger_timeout_seconds,
    )
    topic_registry = TopicRegistry(
        client=ledger_client,
        memo=settings.ledger_topic_memo,
        explicit_topic_id=settings.ledger_topic_id or None,
        uow_factory=uow_factory,
    )
    return Services(
        pin_client=pin_client,
        storage_client=storage_client,
        gate=gate,
        migrator=migrator,
        orchestrator=orchestrator,
        topic_registry=topic_registry,
        audit_logger=AuditHashLogger(ledger_client, topic_registry),
        verifier=MirrorNodeVerifier(
            base_url=settings.mirror_node_url,
            topic_registry=topic_registry,
            message_limit=settings.verify_message_limit,
            default_max_attempts=settings.verify_max_attempts,
            default_interval_ms=settings.verify_interval_ms,
        ),
    )

