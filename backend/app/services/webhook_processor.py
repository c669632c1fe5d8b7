"""Post-call webhook pipeline.

``WebhookProcessor.process`` normalizes a decoded notification, resolves the
agent, parses the analytics string, upserts the call and then runs each side
effect in isolation. Only the steps up to and including the call commit are
fatal; everything after is recorded in the ``ProcessingReport``.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.database import async_session_maker
from app.models.webhook_event import WebhookEvent
from app.schemas.analytics import ParsedAnalytics
from app.schemas.webhook import CanonicalWebhookPayload, ProviderCallStatus
from app.services.agent_directory import SqlAgentDirectory
from app.services.analytics_parser import parse_analytics
from app.services.billing_service import SqlBillingLedger
from app.services.call_events import call_event_bus
from app.services.call_upsert import UpsertOutcome, caller_phone_for, upsert_call
from app.services.collaborators import (
    AgentDirectory,
    AgentRef,
    BillingLedger,
    CallCompletedEvent,
    CallEventPublisher,
    ContactService,
    LeadAnalyticsStore,
    TranscriptStore,
)
from app.services.contact_service import SqlContactService
from app.services.errors import AgentNotFound, WebhookProcessingError
from app.services.lead_analytics_service import SqlLeadAnalyticsStore
from app.services.payload_normalizer import normalize
from app.services.transcript_service import SqlTranscriptStore
from app.utils.logging import ProcessingLogger, get_logger
from app.utils.utils import normalize_phone

logger = get_logger("webhooks.processor")

STEP_TRANSCRIPT = "transcript"
STEP_LEAD_ANALYTICS = "lead_analytics"
STEP_CONTACT = "contact"
STEP_BILLING = "billing"
STEP_CALL_COMPLETED = "call_completed"


class StepStatus(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class StepOutcome:
    step: str
    status: StepStatus
    detail: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ProcessingReport:
    """What happened to one delivery, step by step."""

    processing_id: str
    conversation_id: str
    call_id: int
    call_created: bool
    analytics: Optional[ParsedAnalytics] = None
    steps: List[StepOutcome] = field(default_factory=list)

    @property
    def failed_steps(self) -> List[str]:
        return [outcome.step for outcome in self.steps if outcome.status is StepStatus.FAILED]

    def outcome(self, step: str) -> Optional[StepOutcome]:
        for item in self.steps:
            if item.step == step:
                return item
        return None


def new_processing_id() -> str:
    return f"proc_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class WebhookProcessor:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        agents: AgentDirectory,
        transcripts: TranscriptStore,
        analytics: LeadAnalyticsStore,
        contacts: ContactService,
        billing: BillingLedger,
        events: CallEventPublisher,
        step_timeout: float = 10.0,
        offset_minutes: int = 330,
    ):
        self.session_maker = session_maker
        self.agents = agents
        self.transcripts = transcripts
        self.analytics = analytics
        self.contacts = contacts
        self.billing = billing
        self.events = events
        self.step_timeout = step_timeout
        self.offset_minutes = offset_minutes

    async def process(self, raw_tree: Any, processing_id: Optional[str] = None) -> ProcessingReport:
        """Run the pipeline for one decoded notification.

        Raises ``MalformedPayload``, ``AgentNotFound``, ``WebhookProcessingError``
        when the agent lookup or call upsert exceeds the step timeout, or a
        database error from the call commit. Side-effect failures never propagate.
        """
        processing_id = processing_id or new_processing_id()
        log = ProcessingLogger(processing_id)

        payload = normalize(raw_tree)
        log.conversation_id = payload.conversation_id
        log.info(
            "webhook_processing_started",
            agent_id=payload.agent_provider_id,
            status=payload.status.value,
            shape=payload.shape.value,
            duration_seconds=payload.metadata.duration_seconds,
        )

        try:
            agent = await asyncio.wait_for(
                self.agents.find_agent_by_provider_id(payload.agent_provider_id),
                timeout=self.step_timeout,
            )
        except asyncio.TimeoutError:
            raise WebhookProcessingError(
                f"Agent lookup timed out after {self.step_timeout}s",
                conversation_id=payload.conversation_id,
            )
        if agent is None:
            log.error("webhook_agent_not_found", agent_id=payload.agent_provider_id)
            raise AgentNotFound(payload.agent_provider_id, conversation_id=payload.conversation_id)

        analytics: Optional[ParsedAnalytics] = None
        if payload.analysis_raw_string is not None:
            analytics = parse_analytics(
                payload.analysis_raw_string,
                turn_count=payload.user_turn_count,
                offset_minutes=self.offset_minutes,
            )

        outcome = await self._upsert(payload, agent, analytics, processing_id)
        report = ProcessingReport(
            processing_id=processing_id,
            conversation_id=payload.conversation_id,
            call_id=outcome.call.id,
            call_created=outcome.created,
            analytics=analytics,
        )

        await self._store_transcript(report, log, payload)
        await self._store_analytics(report, log, agent, analytics)
        await self._sync_contact(report, log, payload, agent, analytics)
        await self._bill(report, log, payload, agent, outcome)
        await self._notify(report, log, payload, agent, outcome)

        log.info(
            "webhook_processing_completed",
            call_id=report.call_id,
            call_created=report.call_created,
            failed_steps=report.failed_steps,
        )
        return report

    async def _upsert(
        self,
        payload: CanonicalWebhookPayload,
        agent: AgentRef,
        analytics: Optional[ParsedAnalytics],
        processing_id: str,
    ) -> UpsertOutcome:
        extraction = analytics.extraction if analytics is not None else None

        async def write() -> UpsertOutcome:
            async with self.session_maker() as db:
                try:
                    outcome = await upsert_call(db, payload, agent, extraction, processing_id)
                    await db.commit()
                except Exception:
                    await db.rollback()
                    raise
            return outcome

        try:
            return await asyncio.wait_for(write(), timeout=self.step_timeout)
        except asyncio.TimeoutError:
            raise WebhookProcessingError(
                f"Call upsert timed out after {self.step_timeout}s",
                conversation_id=payload.conversation_id,
            )

    async def _run_step(
        self,
        report: ProcessingReport,
        log: ProcessingLogger,
        step: str,
        action: Callable[[], Awaitable[Optional[str]]],
    ) -> bool:
        try:
            detail = await asyncio.wait_for(action(), timeout=self.step_timeout)
        except asyncio.TimeoutError as e:
            log.step_failed(step, e, call_id=report.call_id, timeout_seconds=self.step_timeout)
            report.steps.append(
                StepOutcome(
                    step,
                    StepStatus.FAILED,
                    error=f"timed out after {self.step_timeout}s",
                )
            )
            return False
        except Exception as e:
            log.step_failed(step, e, call_id=report.call_id)
            report.steps.append(StepOutcome(step, StepStatus.FAILED, error=str(e) or type(e).__name__))
            return False
        report.steps.append(StepOutcome(step, StepStatus.OK, detail=detail))
        return True

    def _skip(self, report: ProcessingReport, log: ProcessingLogger, step: str, reason: str) -> None:
        log.debug("webhook_step_skipped", step=step, reason=reason, call_id=report.call_id)
        report.steps.append(StepOutcome(step, StepStatus.SKIPPED, detail=reason))

    async def _store_transcript(
        self,
        report: ProcessingReport,
        log: ProcessingLogger,
        payload: CanonicalWebhookPayload,
    ) -> None:
        if not payload.transcript_entries:
            self._skip(report, log, STEP_TRANSCRIPT, "no_transcript")
            return

        async def action() -> str:
            transcript_id = await self.transcripts.store(report.call_id, payload.transcript_entries)
            return f"transcript_id={transcript_id}"

        await self._run_step(report, log, STEP_TRANSCRIPT, action)

    async def _store_analytics(
        self,
        report: ProcessingReport,
        log: ProcessingLogger,
        agent: AgentRef,
        analytics: Optional[ParsedAnalytics],
    ) -> None:
        if analytics is None:
            self._skip(report, log, STEP_LEAD_ANALYTICS, "no_analysis")
            return

        async def action() -> str:
            analytics_id = await self.analytics.store(report.call_id, agent.owner_user_id, analytics)
            return f"analytics_id={analytics_id}"

        await self._run_step(report, log, STEP_LEAD_ANALYTICS, action)

    async def _sync_contact(
        self,
        report: ProcessingReport,
        log: ProcessingLogger,
        payload: CanonicalWebhookPayload,
        agent: AgentRef,
        analytics: Optional[ParsedAnalytics],
    ) -> None:
        if analytics is None:
            self._skip(report, log, STEP_CONTACT, "no_extraction")
            return
        phone = normalize_phone(payload.caller_phone_number)
        if phone is None:
            self._skip(report, log, STEP_CONTACT, "unknown_phone")
            return

        async def action() -> str:
            result = await self.contacts.create_or_update(
                agent.owner_user_id, phone, analytics.extraction, report.call_id
            )
            if result.contact_id is None:
                return "no_contact"
            await self.contacts.link_contact_to_call(report.call_id, result.contact_id)
            return f"contact_id={result.contact_id} created={result.created}"

        await self._run_step(report, log, STEP_CONTACT, action)

    async def _bill(
        self,
        report: ProcessingReport,
        log: ProcessingLogger,
        payload: CanonicalWebhookPayload,
        agent: AgentRef,
        outcome: UpsertOutcome,
    ) -> None:
        if payload.status is not ProviderCallStatus.DONE:
            self._skip(report, log, STEP_BILLING, f"status_{payload.status.value}")
            return
        minutes = outcome.call.duration_minutes
        if minutes <= 0:
            self._skip(report, log, STEP_BILLING, "zero_duration")
            return

        description = f"Call to {caller_phone_for(payload)} - {outcome.display_duration}"

        async def action() -> str:
            result = await self.billing.deduct_credits(
                agent.owner_user_id, minutes, description, str(report.call_id)
            )
            if not result.success:
                raise RuntimeError(f"Credit deduction rejected for call {report.call_id}")
            log.info(
                "webhook_credits_deducted",
                call_id=report.call_id,
                user_id=agent.owner_user_id,
                credits=minutes,
                already_applied=result.already_applied,
                balance_after=result.balance_after,
            )
            return "already_applied" if result.already_applied else f"deducted={minutes}"

        await self._run_step(report, log, STEP_BILLING, action)

    async def _notify(
        self,
        report: ProcessingReport,
        log: ProcessingLogger,
        payload: CanonicalWebhookPayload,
        agent: AgentRef,
        outcome: UpsertOutcome,
    ) -> None:
        event = CallCompletedEvent(
            call_id=report.call_id,
            agent_id=agent.internal_agent_id,
            user_id=agent.owner_user_id,
            conversation_id=payload.conversation_id,
            status=outcome.call.status,
            changed_fields=["created"] if outcome.created else ["updated"],
        )

        async def action() -> None:
            self.events.publish(event)

        await self._run_step(report, log, STEP_CALL_COMPLETED, action)


async def record_webhook_event(
    session_maker: async_sessionmaker[AsyncSession],
    processing_id: str,
    processing_time_ms: int,
    report: Optional[ProcessingReport] = None,
    conversation_id: Optional[str] = None,
    error: Optional[str] = None,
    timeout: Optional[float] = None,
) -> None:
    """Write the delivery audit row. Best-effort: failures and timeouts are only logged."""
    event = WebhookEvent(
        processing_id=processing_id,
        conversation_id=report.conversation_id if report else conversation_id,
        call_id=report.call_id if report else None,
        status="failed" if error else ("partial" if report and report.failed_steps else "processed"),
        error=error[:500] if error else None,
        failed_steps=report.failed_steps if report else [],
        processing_time_ms=processing_time_ms,
    )

    async def write() -> None:
        async with session_maker() as db:
            db.add(event)
            await db.commit()

    try:
        await asyncio.wait_for(write(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(
            "webhook_event_record_timeout",
            processing_id=processing_id,
            timeout_seconds=timeout,
        )
    except Exception as e:
        logger.error(
            "webhook_event_record_failed",
            processing_id=processing_id,
            error=str(e),
            error_type=type(e).__name__,
        )


def get_webhook_processor() -> WebhookProcessor:
    """FastAPI dependency building the processor with the SQL-backed collaborators."""
    return WebhookProcessor(
        session_maker=async_session_maker,
        agents=SqlAgentDirectory(async_session_maker),
        transcripts=SqlTranscriptStore(async_session_maker),
        analytics=SqlLeadAnalyticsStore(async_session_maker),
        contacts=SqlContactService(async_session_maker),
        billing=SqlBillingLedger(async_session_maker),
        events=call_event_bus,
        step_timeout=settings.side_effect_timeout_seconds,
        offset_minutes=settings.lead_timezone_offset_minutes,
    )
