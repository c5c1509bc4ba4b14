"""
workflow.py - Identification & Enrollment Workflows

Ties the directory client, the local template store, the capture
orchestrator and the match decision into the kiosk's user-facing runs.

Verification by name:

    Lookup ─► (NoMatch | Disambiguate) ─► EnsureLocalTemplate ─► (Download | UseCached)
           ─► CaptureAndMatch ─► (Retry | Matched) ─► ResolveBinding ─► ReportEvent ─► Done

Every run ends in a WorkflowResult.  Nothing loops internally: a failed run
is retried by the operator starting it again.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from kiosk.capture import CaptureOrchestrator
from kiosk.directory_client import DirectoryClient
from kiosk.errors import CaptureFailure, DeviceError, NoMatch, NoTemplatesEnrolled
from kiosk.matching import MATCH_THRESHOLD, decide
from kiosk.progress import NullChannel, ProgressChannel
from kiosk.template_store import TemplateStore
from kiosk_common.models import DirectoryEntry
from kiosk_common.utils import b64decode_text, b64encode_text

logger = logging.getLogger(__name__)


class State(str, Enum):
    LOOKUP = "Lookup"
    NO_MATCH = "NoMatch"
    DISAMBIGUATE = "Disambiguate"
    ENSURE_LOCAL_TEMPLATE = "EnsureLocalTemplate"
    DOWNLOAD = "Download"
    USE_CACHED = "UseCached"
    CAPTURE_AND_MATCH = "CaptureAndMatch"
    RETRY = "Retry"
    MATCHED = "Matched"
    RESOLVE_BINDING = "ResolveBinding"
    REPORT_EVENT = "ReportEvent"
    CAPTURE_ENROLLMENT = "CaptureEnrollment"
    REMOTE_ENROL = "RemoteEnrol"
    PERSIST = "Persist"
    REMOVE = "Remove"
    DONE = "Done"


@dataclass(frozen=True)
class WorkflowResult:
    success: bool
    message: str
    state: State
    name: Optional[str] = None
    action: Optional[str] = None
    confidence: Optional[float] = None
    score: Optional[int] = None
    enrollment_id: Optional[int] = None
    error: Optional[Exception] = None


def select_entry(name: str, entries: List[DirectoryEntry],
                 strict: bool = False) -> Optional[DirectoryEntry]:
    """
    Pick the directory entry a typed name refers to.

    The server matches substrings, so a unique case-insensitive exact match
    wins.  Otherwise the first result in server order is used, unless
    *strict* is set, in which case several candidates without a unique exact
    match select nothing.
    """
    if not entries:
        return None
    wanted = name.strip().casefold()
    exact = [e for e in entries if e.name.strip().casefold() == wanted]
    if len(exact) == 1:
        return exact[0]
    if strict and len(entries) > 1:
        return None
    return entries[0]


class _Workflow:

    def __init__(self, client: DirectoryClient, store: TemplateStore,
                 orchestrator: CaptureOrchestrator, strict_disambiguation: bool = False,
                 progress: ProgressChannel = None):
        self._client = client
        self._store = store
        self._orchestrator = orchestrator
        self._strict = strict_disambiguation
        self._progress = progress or NullChannel()

    def _step(self, state: State, message: str):
        logger.info(f"[{state.value}] {message}")
        self._progress.emit(state.value, message)

    def _fail(self, state: State, message: str, error: Exception = None, **fields) -> WorkflowResult:
        logger.warning(f"[{state.value}] {message}")
        self._progress.emit(state.value, message, failed=True)
        return WorkflowResult(success=False, message=message, state=state, error=error, **fields)

    def _lookup(self, name: str):
        """Search and select; returns (entry, None) or (None, failure result)."""
        self._step(State.LOOKUP, f"Looking up '{name}'...")
        found = self._client.search_employees(name)
        if not found.ok:
            return None, self._fail(State.LOOKUP, f"Search failed: {found.error_detail}", found.error)
        if not found.value:
            return None, self._fail(State.NO_MATCH, "No matching users.")
        selected = select_entry(name, found.value, self._strict)
        if selected is None:
            return None, self._fail(
                State.DISAMBIGUATE,
                f"'{name}' matches {len(found.value)} users; enter the full name.",
            )
        if len(found.value) > 1:
            self._step(State.DISAMBIGUATE, f"Selected '{selected.name}' (id {selected.id}) "
                                           f"from {len(found.value)} results.")
        return selected, None


# ─────────────────────────────────────────────
# IDENTIFICATION
# ─────────────────────────────────────────────
class IdentificationWorkflow(_Workflow):

    def __init__(self, client: DirectoryClient, store: TemplateStore,
                 orchestrator: CaptureOrchestrator, threshold: int = MATCH_THRESHOLD,
                 strict_disambiguation: bool = False, progress: ProgressChannel = None):
        super().__init__(client, store, orchestrator, strict_disambiguation, progress)
        self._threshold = threshold

    def verify(self, name: str) -> WorkflowResult:
        """Verify the person at the reader against the typed *name* and clock them."""
        name = (name or "").strip()
        if not name:
            return self._fail(State.LOOKUP, "Enter a name first.")

        selected, failure = self._lookup(name)
        if failure:
            return failure

        # EnsureLocalTemplate
        enrolled = self._store.get(selected.name)
        if enrolled is None:
            self._step(State.DOWNLOAD, f"No local template for '{selected.name}'; downloading...")
            fetched = self._client.fetch_template(selected.id)
            if not fetched.ok:
                return self._fail(State.DOWNLOAD, f"Template download failed: {fetched.error_detail}",
                                  fetched.error, name=selected.name)
            try:
                enrolled = self._store.put(selected.name, b64decode_text(fetched.value))
            except (ValueError, OSError) as e:
                return self._fail(State.DOWNLOAD, f"Downloaded template is unusable: {e}", e,
                                  name=selected.name)
        else:
            self._step(State.USE_CACHED, f"Using cached template for '{selected.name}'.")

        # CaptureAndMatch
        self._step(State.CAPTURE_AND_MATCH, f"Scan finger for '{selected.name}' to verify...")
        try:
            probe = self._orchestrator.capture_probe()
            score = self._orchestrator.compare(probe, enrolled)
        except DeviceError as e:
            return self._fail(State.CAPTURE_AND_MATCH, str(e), e, name=selected.name)

        decision = decide(score, self._threshold)
        if not decision.is_match:
            return self._fail(State.RETRY, "Fingerprint not recognised, try again.",
                              NoMatch(score), name=selected.name, score=score, confidence=0.0)
        self._step(State.MATCHED, f"Fingerprint matches '{selected.name}' "
                                  f"(score {score}, ~{decision.percent}% confidence).")

        # ResolveBinding
        try:
            enrollment_id = self._store.adopt_binding(selected.name, selected.id)
        except OSError as e:
            return self._fail(State.RESOLVE_BINDING, f"Could not save enrollment binding: {e}", e,
                              name=selected.name, score=score, confidence=decision.confidence)

        return self._report(selected.name, enrollment_id, decision)

    def identify_any(self) -> WorkflowResult:
        """1:N identification against every locally cached template."""
        candidates = self._store.items()
        if not candidates:
            error = NoTemplatesEnrolled()
            return self._fail(State.ENSURE_LOCAL_TEMPLATE, str(error), error)

        self._step(State.CAPTURE_AND_MATCH, "Scan a finger to identify...")
        try:
            probe = self._orchestrator.capture_probe()
        except DeviceError as e:
            return self._fail(State.CAPTURE_AND_MATCH, str(e), e)

        best_name, best_score = None, None
        for name, enrolled in candidates:
            try:
                score = self._orchestrator.compare(probe, enrolled)
            except CaptureFailure as e:
                logger.warning(f"Compare failed for {name}: {e}")
                continue
            logger.debug(f"Compare score with {name}: {score}")
            if best_score is None or score < best_score:
                best_name, best_score = name, score

        if best_name is None:
            return self._fail(State.CAPTURE_AND_MATCH, "Comparison failed for every enrolled template.")

        decision = decide(best_score, self._threshold)
        if not decision.is_match:
            return self._fail(State.RETRY, "No matching template found.", NoMatch(best_score),
                              score=best_score, confidence=0.0)
        self._step(State.MATCHED, f"Match: {best_name} (score {best_score}, "
                                  f"~{decision.percent}% confidence)")

        enrollment_id = self._store.get_binding(best_name)
        if enrollment_id is None:
            return self._fail(State.RESOLVE_BINDING,
                              f"Matched '{best_name}' but no enrollment is linked; verify by name once.",
                              name=best_name, score=best_score, confidence=decision.confidence)
        return self._report(best_name, enrollment_id, decision)

    def _report(self, name: str, enrollment_id: int, decision) -> WorkflowResult:
        self._step(State.REPORT_EVENT, f"Recording scan for enrollment {enrollment_id}...")
        reported = self._client.report_scan(enrollment_id, decision.confidence, name)
        if not reported.ok:
            return self._fail(
                State.REPORT_EVENT,
                f"Matched locally but the scan was not recorded: {reported.error_detail}",
                reported.error, name=name, score=decision.score,
                confidence=decision.confidence, enrollment_id=enrollment_id,
            )
        action = reported.value.action
        message = f"Clocked {action}: {name} ({decision.percent}% confidence)"
        self._step(State.DONE, message)
        return WorkflowResult(
            success=True, message=message, state=State.DONE, name=name, action=action,
            confidence=decision.confidence, score=decision.score, enrollment_id=enrollment_id,
        )


# ─────────────────────────────────────────────
# ENROLLMENT
# ─────────────────────────────────────────────
class EnrollmentWorkflow(_Workflow):
    """
    Local capture and fusion always finish before any remote call; the
    enrollment id returned by the server is persisted as the binding
    straight away.
    """

    def __init__(self, client: DirectoryClient, store: TemplateStore,
                 orchestrator: CaptureOrchestrator, site_id: str, device_id: str,
                 strict_disambiguation: bool = False, progress: ProgressChannel = None):
        super().__init__(client, store, orchestrator, strict_disambiguation, progress)
        self._site_id = site_id
        self._device_id = device_id

    def _capture(self, name: str):
        self._step(State.CAPTURE_ENROLLMENT, f"Starting enrolment for '{name}'...")
        try:
            return self._orchestrator.capture_enrollment_template(label=name), None
        except DeviceError as e:
            return None, self._fail(State.CAPTURE_ENROLLMENT, str(e), e, name=name)

    def _persist(self, name: str, data: bytes, response) -> WorkflowResult:
        try:
            self._store.put(name, data)
            self._store.set_binding(name, response.enrollment_id)
        except (OSError, ValueError) as e:
            return self._fail(
                State.PERSIST,
                f"Server accepted enrollment {response.enrollment_id} but saving locally failed: {e}",
                e, name=name, enrollment_id=response.enrollment_id,
            )
        label = response.enrollment_id_formatted or str(response.enrollment_id)
        message = f"Enrolment COMPLETE for '{name}' (enrollment {label})."
        self._step(State.DONE, message)
        return WorkflowResult(success=True, message=message, state=State.DONE, name=name,
                              enrollment_id=response.enrollment_id)

    def enrol(self, name: str) -> WorkflowResult:
        """Create a brand-new remote identity for *name*."""
        name = (name or "").strip()
        if not name:
            return self._fail(State.CAPTURE_ENROLLMENT, "Enter a name to enrol.")
        if self._store.has(name):
            return self._fail(State.CAPTURE_ENROLLMENT,
                              f"'{name}' already has a template. Use re-enrol.", name=name)

        template, failure = self._capture(name)
        if failure:
            return failure

        self._step(State.REMOTE_ENROL, f"Sending enrolment for '{name}'...")
        sent = self._client.enrol(self._site_id, self._device_id, name, b64encode_text(template.data))
        if not sent.ok:
            return self._fail(State.REMOTE_ENROL, f"Enrolment FAILED for '{name}': {sent.error_detail}",
                              sent.error, name=name)
        return self._persist(name, template.data, sent.value)

    def reenrol(self, name: str) -> WorkflowResult:
        """Replace the template of an existing remote identity."""
        name = (name or "").strip()
        if not name:
            return self._fail(State.CAPTURE_ENROLLMENT, "Enter a name to re-enrol.")

        template, failure = self._capture(name)
        if failure:
            return failure

        selected, failure = self._lookup(name)
        if failure:
            return failure

        self._step(State.REMOTE_ENROL, f"Re-enrolling '{selected.name}' (id {selected.id})...")
        sent = self._client.reenrol(selected.id, b64encode_text(template.data))
        if not sent.ok:
            return self._fail(State.REMOTE_ENROL,
                              f"Re-enrolment FAILED for '{selected.name}': {sent.error_detail}",
                              sent.error, name=selected.name)
        return self._persist(selected.name, template.data, sent.value)

    def remove(self, name: str, remote: bool = True) -> WorkflowResult:
        """Delete the remote enrollment (if bound) and then the local template and binding."""
        name = (name or "").strip()
        if not name:
            return self._fail(State.REMOVE, "Select a user to remove.")
        enrollment_id = self._store.get_binding(name)
        if enrollment_id is None and not self._store.has(name):
            return self._fail(State.REMOVE, f"Failed to remove '{name}' (not found).", name=name)

        if remote and enrollment_id is not None:
            self._step(State.REMOVE, f"Deleting enrollment {enrollment_id} on the server...")
            deleted = self._client.delete_enrollment(enrollment_id)
            if not deleted.ok:
                return self._fail(State.REMOVE, f"Server delete failed: {deleted.error_detail}",
                                  deleted.error, name=name, enrollment_id=enrollment_id)

        try:
            self._store.remove(name)
        except OSError as e:
            return self._fail(State.REMOVE, f"Local removal failed: {e}", e,
                              name=name, enrollment_id=enrollment_id)
        message = f"Removed '{name}'."
        self._step(State.DONE, message)
        return WorkflowResult(success=True, message=message, state=State.DONE, name=name,
                              enrollment_id=enrollment_id)
