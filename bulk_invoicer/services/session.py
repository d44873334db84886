from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Any

from ..excel.reader import FileReadError, read_tabular_bytes
from ..issuing.issuer import DocumentIssuer, EmissionError
from ..issuing.prior_emissions import PriorEmissionsError
from ..logging.error_log import ErrorLogBuffer
from ..logging.init import SUMMARY_LEVEL
from ..models.batch_result import BatchPreview, EmissionReport, EmissionStatus, GroupOutcome, ProposalSummary
from ..models.config_models import CounterpartyProfile, EmissionConfig, ImportConfig
from ..models.error_record import ErrorRecord
from ..models.groups import GroupKey, SynthesizedDocument
from ..models.records import RawRecord, SchemaMapping
from ..models.validation import ValidationReport
from .dedup import AntiDuplicateGuard, DuplicateEmissionError
from .orchestrator import ProcessingError, classify_and_aggregate, resolve_and_validate
from .progress import EmissionProgress
from .schema_resolver import SchemaResolutionError
from .session_store import Clock, InMemorySessionStore, SessionStore, SessionSweeper
from .summary import render_emission_line
from .synthesizer import synthesize_all

"""Import session: the per-user conversation from upload to issued documents.

    IDLE -> AWAITING_FILE -> VALIDATING -> [AWAITING_RULE_CHOICE] ->
    AWAITING_CONFIRMATION -> EMITTING -> COMPLETED | FAILED | CANCELLED

Every public operation runs under the session's own RLock. Emission holds that
lock for the whole batch, so a concurrent cancel() only raises a flag that the
emission loop checks between groups; a group already handed to the issuer is
always allowed to finish.

SessionManager owns the sessions of one process and runs the blocking steps
(file parsing, issuance) on a thread pool.
"""

__all__ = [
    "SessionState",
    "SessionStateError",
    "ImportSession",
    "SessionManager",
]

logger = logging.getLogger(__name__)


class SessionState(Enum):
    IDLE = "idle"
    AWAITING_FILE = "awaiting_file"
    VALIDATING = "validating"
    AWAITING_RULE_CHOICE = "awaiting_rule_choice"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    EMITTING = "emitting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({SessionState.COMPLETED, SessionState.FAILED, SessionState.CANCELLED})


class SessionStateError(Exception):
    """Operation not allowed in the session's current state."""

    def __init__(self, action: str, state: SessionState) -> None:
        self.action = action
        self.state = state
        super().__init__(f"cannot {action} while session is {state.value}")


class ImportSession:
    def __init__(
        self,
        user_id: str,
        profile: CounterpartyProfile,
        issuer: DocumentIssuer,
        guard: AntiDuplicateGuard,
        counterparty_ref: str | None = None,
        emission: EmissionConfig | None = None,
        shown_errors: int = 5,
        clock: Clock = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        error_log: ErrorLogBuffer | None = None,
    ) -> None:
        self.user_id = user_id
        self.profile = profile
        self.issuer = issuer
        self.guard = guard
        self.counterparty_ref = counterparty_ref
        self.emission = emission or EmissionConfig()
        self.shown_errors = shown_errors
        self.clock = clock
        self.sleep = sleep
        self.error_log = error_log

        self.lock = threading.RLock()
        self._cancel_requested = threading.Event()
        self.state = SessionState.IDLE
        self.last_activity = clock()
        self.failure_reason: str | None = None
        self.source = "<upload>"

        self._records: tuple[RawRecord, ...] = ()
        self._mapping: SchemaMapping | None = None
        self.report: ValidationReport | None = None
        self.preview: BatchPreview | None = None
        self.documents: tuple[SynthesizedDocument, ...] = ()
        self.emission_report: EmissionReport | None = None
        self._outcomes: dict[GroupKey, GroupOutcome] = {}  # latest outcome per group
        self._emission_failed = False

    # -- helpers -----------------------------------------------------------

    def _touch(self) -> None:
        self.last_activity = self.clock()

    def _require(self, action: str, *states: SessionState) -> None:
        if self.state not in states:
            raise SessionStateError(action, self.state)

    def _transition(self, state: SessionState) -> None:
        logger.debug(f"session {self.user_id}: {self.state.value} -> {state.value}")
        self.state = state

    def _fail(self, reason: str) -> None:
        self.failure_reason = reason
        self._transition(SessionState.FAILED)
        logger.warning(f"session {self.user_id}: {reason}")

    def _discard(self) -> None:
        self._records = ()
        self._mapping = None
        self.preview = None
        self.documents = ()

    def _record_error(self, row: int, field: str, error_type: str, message: str) -> None:
        if self.error_log is not None:
            self.error_log.append(ErrorRecord.create(self.source, self.profile.name, row, field, error_type, message))

    def _honour_pending_cancel(self) -> bool:
        if self._cancel_requested.is_set() and self.state not in TERMINAL_STATES:
            self._discard()
            self._transition(SessionState.CANCELLED)
            return True
        return False

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def can_retry(self) -> bool:
        return self.state is SessionState.FAILED and self._emission_failed

    # -- operations --------------------------------------------------------

    def start(self) -> None:
        with self.lock:
            self._require("start", SessionState.IDLE)
            self._touch()
            self._transition(SessionState.AWAITING_FILE)

    def receive_bytes(self, data: bytes, filename: str) -> ValidationReport:
        """Parse an uploaded spreadsheet and hand it to receive_file().

        Raises:
            FileReadError: unreadable file (session goes to FAILED)
        """
        with self.lock:
            self._require("receive a file", SessionState.AWAITING_FILE)
            self._touch()
            self.source = filename
            try:
                table = read_tabular_bytes(data, filename, all_sheets=self.profile.all_sheets)
            except FileReadError as e:
                self._record_error(-1, "file", "FILE_UNREADABLE", str(e))
                self._fail(str(e))
                raise
            return self.receive_file(table.headers, table.records, source=filename)

    def receive_file(
        self,
        headers: Sequence[str],
        records: Sequence[RawRecord],
        source: str | None = None,
    ) -> ValidationReport:
        """Resolve, validate and (when unambiguous) classify an uploaded table.

        Returns the ValidationReport. A rejected batch leaves the session FAILED.

        Raises:
            SchemaResolutionError: required columns missing (session goes to FAILED)
        """
        with self.lock:
            self._require("receive a file", SessionState.AWAITING_FILE)
            self._touch()
            if source is not None:
                self.source = source
            self._transition(SessionState.VALIDATING)
            try:
                mapping, report = resolve_and_validate(
                    headers, records, self.profile, self.shown_errors, self.error_log, self.source
                )
            except SchemaResolutionError as e:
                self._fail(str(e))
                raise
            self.report = report
            if not report.valid:
                self.preview = BatchPreview(row_count=len(records), mapping=mapping, report=report)
                self._fail(report.render())
                return report

            self._records = tuple(records)
            self._mapping = mapping
            if self._honour_pending_cancel():
                return report
            if self.profile.needs_rule_choice:
                self._transition(SessionState.AWAITING_RULE_CHOICE)
            else:
                self._prepare(None)
            return report

    def choose_rule_set(self, name: str) -> list[ProposalSummary]:
        """Pick the rule set for profiles where the file shape is ambiguous.

        Raises:
            ProcessingError: unknown rule set (session stays in AWAITING_RULE_CHOICE)
        """
        with self.lock:
            self._require("choose a rule set", SessionState.AWAITING_RULE_CHOICE)
            self._touch()
            if name not in self.profile.rule_sets:
                options = ", ".join(self.profile.rule_sets)
                raise ProcessingError(f"unknown rule set '{name}' (choose one of: {options})")
            self._prepare(name)
            if self._honour_pending_cancel():
                return []
            return self.proposals()

    def _prepare(self, rule_set_name: str | None) -> None:
        if self.report is None or self._mapping is None:
            raise SessionStateError("classify", self.state)
        preview = classify_and_aggregate(self._records, self._mapping, self.report, self.profile, rule_set_name)
        self.preview = preview
        for w in preview.warnings:
            self._record_error(w.row_index, "category", "EXCLUDED_ROW", w.message)
        if not preview.billable_groups:
            reason = "no billable groups: " + preview.describe_groups()
            if preview.warnings:
                reason += f", {len(preview.warnings)} rows excluded"
            self._fail(reason)
            return
        self._transition(SessionState.AWAITING_CONFIRMATION)

    def proposals(self) -> list[ProposalSummary]:
        with self.lock:
            self._touch()
            if self.preview is None:
                return []
            return self.preview.proposals()

    def confirm(self) -> EmissionReport:
        """Synthesize one document per billable group and issue them in order."""
        with self.lock:
            self._require("confirm", SessionState.AWAITING_CONFIRMATION)
            self._touch()
            if self.preview is None or self._mapping is None:
                raise SessionStateError("confirm", self.state)
            self.documents = tuple(
                synthesize_all(self.preview.billable_groups, self._mapping, self.profile, self.counterparty_ref)
            )
            return self._emit()

    def retry(self) -> EmissionReport:
        """Re-attempt the groups that did not get a document in the last emission."""
        with self.lock:
            if not self.can_retry:
                raise SessionStateError("retry", self.state)
            self._touch()
            self._cancel_requested.clear()
            return self._emit()

    def cancel(self) -> bool:
        """Cancel the session.

        Returns True when the session is now CANCELLED, False when an emission
        is in flight; that emission stops before its next group.
        """
        self._cancel_requested.set()
        if not self.lock.acquire(blocking=False):
            logger.info(f"session {self.user_id}: cancel requested, stopping after the current group")
            return False
        try:
            if self.state is SessionState.EMITTING:
                # reentrant call from the emitting thread (e.g. an issuer callback)
                return False
            if self.state in (SessionState.COMPLETED, SessionState.CANCELLED) or (
                self.state is SessionState.FAILED and not self._emission_failed
            ):
                self._cancel_requested.clear()
                raise SessionStateError("cancel", self.state)
            self._touch()
            self._discard()
            self._transition(SessionState.CANCELLED)
            logger.info(f"session {self.user_id}: cancelled")
            return True
        finally:
            self.lock.release()

    def expire(self) -> None:
        """Called by the store on idle eviction; the caller holds the lock."""
        self._discard()
        if not self.is_terminal or self.can_retry:
            self.failure_reason = "session expired"
            self._transition(SessionState.CANCELLED)

    # -- emission ----------------------------------------------------------

    def _emit(self) -> EmissionReport:
        self._transition(SessionState.EMITTING)
        self._emission_failed = False
        pending = [
            d for d in self.documents
            if not (d.group_key in self._outcomes and self._outcomes[d.group_key].ok)
        ]
        cancelled = False
        with EmissionProgress(len(pending)) as progress:
            for document in pending:
                if self._cancel_requested.is_set():
                    cancelled = True
                    break
                progress.start_group(document.group_key.label)
                outcome = self._emit_one(document)
                self._outcomes[document.group_key] = outcome
                progress.finish_group(outcome.ok)
                progress.set_postfix(issued=sum(1 for o in self._outcomes.values() if o.ok))

        report = EmissionReport(
            tuple(
                self._outcomes.get(d.group_key)
                or GroupOutcome(d.group_key, EmissionStatus.NOT_ATTEMPTED, d.fingerprint)
                for d in self.documents
            )
        )
        self.emission_report = report
        if cancelled:
            self._discard()
            self._transition(SessionState.CANCELLED)
            logger.info(f"session {self.user_id}: cancelled during emission, {report.issued_count} issued")
        elif report.all_issued:
            self._transition(SessionState.COMPLETED)
        else:
            self._emission_failed = True
            self._fail(f"{report.failed_count + report.duplicate_count} of {len(report.outcomes)} groups not issued")
        logger.log(SUMMARY_LEVEL, render_emission_line(report, self.state.name).removeprefix("SUMMARY "))
        return report

    def _emit_one(self, document: SynthesizedDocument) -> GroupOutcome:
        label = document.group_key.label
        try:
            self.guard.check(document)
        except DuplicateEmissionError as e:
            self._record_error(-1, label, "DUPLICATE_EMISSION", str(e))
            return GroupOutcome(
                document.group_key, EmissionStatus.DUPLICATE, document.fingerprint,
                issued=e.existing_document_ref, error=str(e),
            )
        except PriorEmissionsError as e:
            # lookup unavailable: not issued, retryable once the store is back
            message = f"prior emissions lookup failed: {e}"
            logger.error(f"emit: {label} not attempted, {message}")
            self._record_error(-1, label, EmissionStatus.FAILED_TRANSIENT.name, message)
            return GroupOutcome(document.group_key, EmissionStatus.FAILED_TRANSIENT, document.fingerprint, error=message)

        attempts = 0
        while True:
            attempts += 1
            try:
                issued = self.issuer.issue(document, document.counterparty_ref)
            except EmissionError as e:
                if e.transient and attempts <= self.emission.max_transient_retries:
                    delay = self.emission.retry_backoff_seconds * attempts
                    logger.warning(f"emit: {label} attempt {attempts} failed ({e}), retrying in {delay:.1f}s")
                    self.sleep(delay)
                    continue
                status = EmissionStatus.FAILED_TRANSIENT if e.transient else EmissionStatus.FAILED_PERMANENT
                logger.error(f"emit: {label} failed after {attempts} attempt(s): {e}")
                self._record_error(-1, label, status.name, str(e))
                return GroupOutcome(document.group_key, status, document.fingerprint, error=str(e), attempts=attempts)
            break

        try:
            self.guard.record(document, issued)
        except PriorEmissionsError as e:
            # The document exists at the issuer; the in-session outcome still blocks re-emission
            logger.error(f"emit: {label} issued as {issued.number} but not recorded: {e}")
            self._record_error(-1, label, "PRIOR_EMISSION_NOT_RECORDED", str(e))
        logger.info(f"emit: {label} issued as {issued.number} total={issued.total:.2f}")
        return GroupOutcome(document.group_key, EmissionStatus.ISSUED, document.fingerprint, issued=issued, attempts=attempts)


class SessionManager:
    """Creates, looks up and drives sessions; blocking work goes to a thread pool."""

    def __init__(
        self,
        config: ImportConfig,
        issuer: DocumentIssuer,
        guard: AntiDuplicateGuard,
        store: SessionStore | None = None,
        max_workers: int = 4,
        clock: Clock = time.monotonic,
        error_log: ErrorLogBuffer | None = None,
        start_sweeper: bool = False,
    ) -> None:
        self.config = config
        self.issuer = issuer
        self.guard = guard
        self.clock = clock
        self.error_log = error_log
        self.store = store or InMemorySessionStore(config.session.ttl_seconds, clock=clock)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="import-session")
        self._sweeper: SessionSweeper | None = None
        if start_sweeper:
            self._sweeper = SessionSweeper(self.store, config.session.sweep_interval_seconds)
            self._sweeper.start()

    def open(self, user_id: str, profile_name: str, counterparty_ref: str | None = None) -> ImportSession:
        """Start a fresh session for the user, cancelling any unfinished one.

        Raises:
            KeyError: unknown profile
        """
        profile = self.config.profile(profile_name)
        previous = self.store.get(user_id)
        if previous is not None and (not previous.is_terminal or previous.can_retry):
            previous.cancel()
        session = ImportSession(
            user_id,
            profile,
            self.issuer,
            self.guard,
            counterparty_ref=counterparty_ref,
            emission=self.config.emission,
            shown_errors=self.config.shown_errors,
            clock=self.clock,
            error_log=self.error_log,
        )
        session.start()
        self.store.set(user_id, session)
        logger.info(f"session {user_id}: opened for profile {profile.name}")
        return session

    def get(self, user_id: str) -> ImportSession:
        session = self.store.get(user_id)
        if session is None:
            raise KeyError(f"no active session for user '{user_id}'")
        return session

    def _submit(self, fn: Callable[..., Any], *args: Any) -> Future[Any]:
        return self._executor.submit(fn, *args)

    def submit_file(self, user_id: str, data: bytes, filename: str) -> Future[ValidationReport]:
        return self._submit(self.get(user_id).receive_bytes, data, filename)

    def submit_confirm(self, user_id: str) -> Future[EmissionReport]:
        return self._submit(self.get(user_id).confirm)

    def submit_retry(self, user_id: str) -> Future[EmissionReport]:
        return self._submit(self.get(user_id).retry)

    def close(self, user_id: str) -> None:
        self.store.delete(user_id)

    def shutdown(self, wait: bool = True) -> None:
        if self._sweeper is not None:
            self._sweeper.stop(timeout=1.0)
            self._sweeper = None
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> SessionManager:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.shutdown()
