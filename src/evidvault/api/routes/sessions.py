"""Session audit API endpoints.

- POST /api/log-session - Anchor the SHA-256 digest of a session transcript
- GET /api/session-topic - Current ledger topic and mirror node URL
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from evidvault.api.dependencies import get_services
from evidvault.core.dependencies import Services
from evidvault.services.exceptions import ServiceError, TransientError

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["sessions"])


# Request/Response Models
#
# Keys are camelCase on the wire; snake_case is accepted on input too.


class LogSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_summary: str = Field(
        ...,
        alias="sessionSummary",
        description="Session transcript; only its digest leaves the process",
        min_length=1,
    )
    enable_verification: bool = Field(
        default=False,
        alias="enableVerification",
        description="Poll the mirror node until the digest is visible",
    )


class VerificationDTO(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    verified: bool
    attempts_made: int = Field(..., alias="attemptsMade")
    sequence_number: int | None = Field(default=None, alias="sequenceNumber")
    consensus_timestamp: str | None = Field(default=None, alias="consensusTimestamp")
    attempt: int | None = None
    reason: str | None = None


class LogSessionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    hash: str
    submission_ref: str = Field(..., alias="submissionRef")
    topic_id: str = Field(..., alias="topicId")
    timestamp: str
    sequence_number: int | None = Field(default=None, alias="sequenceNumber")
    verification: VerificationDTO | None = None


class SessionTopicResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    topic_id: str | None = Field(..., alias="topicId")
    mirror_node_url: str | None = Field(
        default=None,
        alias="mirrorNodeUrl",
        description="Mirror node URL listing the topic's messages",
    )


# API Endpoints


@router.post("/log-session", response_model=LogSessionResponse)
async def log_session(
    request: LogSessionRequest,
    services: Services = Depends(get_services),
) -> LogSessionResponse:
    """Hash the session text and submit the digest envelope to the ledger topic.

    Verification is informational: verified=false never turns the
    submission into an error.
    """
    try:
        submission = await services.audit_logger.log_text(request.session_summary)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except TransientError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=f"Ledger unavailable: {e}"
        )
    except ServiceError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    verification = None
    if request.enable_verification:
        result = await services.verifier.verify(submission.digest, topic_id=submission.topic_id)
        verification = VerificationDTO(
            verified=result.verified,
            attempts_made=result.attempts_made,
            sequence_number=result.sequence_number,
            consensus_timestamp=result.consensus_timestamp,
            attempt=result.attempt,
            reason=result.reason,
        )

    return LogSessionResponse(
        success=True,
        hash=submission.digest,
        submission_ref=submission.submission_ref,
        topic_id=submission.topic_id,
        timestamp=submission.timestamp,
        sequence_number=submission.sequence_number,
        verification=verification,
    )


@router.get("/session-topic", response_model=SessionTopicResponse)
async def get_session_topic(services: Services = Depends(get_services)) -> SessionTopicResponse:
    topic_id = services.topic_registry.cached_topic_id
    return SessionTopicResponse(
        topic_id=topic_id,
        mirror_node_url=services.verifier.topic_messages_url(topic_id) if topic_id else None,
    )
