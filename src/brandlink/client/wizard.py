"""Provisioning wizard for adding a custom domain.

The wizard walks a tenant through three steps:

    DETAILS     enter base domain and optional subdomain, creates the record
    DNS_CONFIG  show the DNS record to add, check it on demand
    REVIEW      confirm, then close

The wizard never deletes the record it created. Closing it while a DNS
check is in flight discards the late result; the check itself still
completes and updates the stored record.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

import structlog

from brandlink.client.service import DomainService
from brandlink.domains.errors import (
    ConflictError,
    DomainError,
    SessionExpired,
    TransientError,
    ValidationError,
    VerificationFailure,
)
from brandlink.domains.hostnames import build_full_domain, validate_hostname, validate_subdomain
from brandlink.domains.manager import SetupInstructions, build_setup_instructions
from brandlink.domains.storage import DomainRecord
from brandlink.domains.verification import (
    OUTCOME_MESSAGES,
    VerificationOutcome,
    VerificationReport,
)

logger = structlog.get_logger()


class WizardStep(Enum):
    """Wizard page."""

    DETAILS = "details"
    DNS_CONFIG = "dns_config"
    REVIEW = "review"


class PollState(Enum):
    """State of the last user-triggered DNS check."""

    IDLE = "idle"
    CHECKING = "checking"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class Draft:
    """Domain details typed by the tenant before a record exists."""

    base_domain: str = ""
    subdomain: str = ""


@dataclass(frozen=True)
class WizardState:
    """Snapshot passed to state hooks."""

    step: WizardStep
    poll_state: PollState
    closed: bool
    record_id: str | None
    message: str | None


class ProvisioningWizard:
    """State machine behind the "add custom domain" dialog.

    Args:
        service: Domain service for the signed-in tenant.
        advance_on_success: Move to REVIEW as soon as a check succeeds.
    """

    def __init__(self, service: DomainService, advance_on_success: bool = False) -> None:
        self.service = service
        self.advance_on_success = advance_on_success
        self.draft = Draft()
        self.record: DomainRecord | None = None
        self.report: VerificationReport | None = None
        self.error: DomainError | None = None
        self.message: str | None = None
        self.aborted = False

        self._step = WizardStep.DETAILS
        self._poll_state = PollState.IDLE
        self._closed = False
        self._creating = False
        self._generation = 0
        self._state_hooks: list[Callable[[WizardState], None]] = []

    @property
    def step(self) -> WizardStep:
        return self._step

    @property
    def poll_state(self) -> PollState:
        return self._poll_state

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def state(self) -> WizardState:
        return WizardState(
            step=self._step,
            poll_state=self._poll_state,
            closed=self._closed,
            record_id=self.record.id if self.record else None,
            message=self.message,
        )

    @property
    def instructions(self) -> SetupInstructions | None:
        """DNS record to show on the DNS_CONFIG page."""
        if self.record is None:
            return None
        return build_setup_instructions(self.record, self.record.cname_target)

    def add_state_hook(self, hook: Callable[[WizardState], None]) -> None:
        """Add a hook to be called on state changes."""
        self._state_hooks.append(hook)

    def remove_state_hook(self, hook: Callable[[WizardState], None]) -> None:
        """Remove a state change hook."""
        if hook in self._state_hooks:
            self._state_hooks.remove(hook)

    def _notify(self) -> None:
        state = self.state
        for hook in self._state_hooks:
            try:
                hook(state)
            except Exception as e:
                logger.warning("Wizard hook error", error=str(e))

    def _set_step(self, step: WizardStep) -> None:
        if self._step != step:
            logger.debug("Wizard step changed", old=self._step.value, new=step.value)
            self._step = step
            self._notify()

    def _set_poll_state(self, poll_state: PollState) -> None:
        if self._poll_state != poll_state:
            self._poll_state = poll_state
            self._notify()

    def _fail(self, error: DomainError, message: str | None = None) -> None:
        self.error = error
        self.message = message or error.message

    def _abort(self) -> None:
        self.aborted = True
        self.close()

    def set_details(self, base_domain: str, subdomain: str | None = None) -> None:
        """Edit the draft on the DETAILS page.

        Raises:
            ConflictError: If the record was already created or the wizard is closed.
        """
        if self._closed:
            raise ConflictError("The wizard is closed")
        if self.record is not None:
            raise ConflictError("Domain details cannot change once the domain is created")
        self.draft = Draft(base_domain=base_domain or "", subdomain=subdomain or "")

    async def next(self) -> bool:
        """Advance one step. Returns True when the step changed."""
        if self._closed:
            return False
        if self._step == WizardStep.DETAILS:
            return await self._submit_details()
        if self._step == WizardStep.DNS_CONFIG:
            if self._poll_state != PollState.SUCCESS:
                self._fail(ConflictError("Verify your DNS configuration before continuing"))
                return False
            self._set_step(WizardStep.REVIEW)
            return True
        return self.finish()

    async def _submit_details(self) -> bool:
        if self.record is not None:
            self._set_step(WizardStep.DNS_CONFIG)
            return True
        if self._creating:
            return False

        try:
            base_domain = validate_hostname(self.draft.base_domain)
            subdomain = validate_subdomain(self.draft.subdomain)
            validate_hostname(build_full_domain(base_domain, subdomain))
        except ValidationError as e:
            self._fail(e)
            return False

        generation = self._generation
        self._creating = True
        try:
            record = await self.service.create_domain(base_domain, subdomain, is_default=False)
        except SessionExpired:
            if generation == self._generation:
                self._abort()
            raise
        except DomainError as e:
            if generation == self._generation:
                self._fail(e)
            return False
        finally:
            self._creating = False

        if generation != self._generation:
            logger.debug("Discarding domain creation for closed wizard", domain_id=record.id)
            return False

        self.record = record
        self.error = None
        self.message = None
        logger.debug("Wizard created domain", domain=record.full_domain, domain_id=record.id)
        self._set_step(WizardStep.DNS_CONFIG)
        return True

    async def check_dns(self) -> VerificationReport | None:
        """Run a DNS check for the created record.

        Returns:
            The report, or None when the check was ignored, failed with an
            error, or finished after the wizard was closed.
        """
        if self._closed or self._step != WizardStep.DNS_CONFIG or self.record is None:
            return None
        if self._poll_state == PollState.CHECKING:
            logger.debug("DNS check already running", domain_id=self.record.id)
            return None

        generation = self._generation
        self.error = None
        self.message = None
        self._set_poll_state(PollState.CHECKING)

        try:
            report = await self.service.verify_domain(self.record.id)
        except SessionExpired:
            if generation == self._generation:
                self._abort()
            raise
        except DomainError as e:
            if generation != self._generation:
                logger.debug("Discarding DNS check error for closed wizard", error=e.message)
                return None
            if isinstance(e, TransientError):
                self._fail(e, OUTCOME_MESSAGES[VerificationOutcome.TRANSIENT_ERROR])
            else:
                self._fail(e)
            self._set_poll_state(PollState.FAILED)
            return None

        if generation != self._generation:
            logger.debug(
                "Discarding DNS check result for closed wizard",
                outcome=report.outcome.value,
            )
            return None

        self.report = report
        if report.record is not None:
            self.record = report.record
        self.message = report.message

        if report.is_verified:
            self._set_poll_state(PollState.SUCCESS)
            if self.advance_on_success and self._step == WizardStep.DNS_CONFIG:
                self._set_step(WizardStep.REVIEW)
        else:
            try:
                report.raise_for_outcome()
            except (TransientError, VerificationFailure) as e:
                self.error = e
            self._set_poll_state(PollState.FAILED)
        return report

    def previous(self) -> bool:
        """Go back one step. The created record is kept."""
        if self._closed:
            return False
        if self._step == WizardStep.REVIEW:
            self._set_step(WizardStep.DNS_CONFIG)
            return True
        if self._step == WizardStep.DNS_CONFIG:
            self._set_step(WizardStep.DETAILS)
            return True
        return False

    def finish(self) -> bool:
        """Close the wizard from the REVIEW page."""
        if self._closed or self._step != WizardStep.REVIEW:
            return False
        self.close()
        return True

    def close(self) -> None:
        """Close the wizard at any point. Pending results are discarded."""
        if self._closed:
            return
        self._generation += 1
        self._closed = True
        logger.debug(
            "Wizard closed",
            step=self._step.value,
            domain_id=self.record.id if self.record else None,
            aborted=self.aborted,
        )
        self._notify()
