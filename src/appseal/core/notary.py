"""
Notarization state machine.

    NOT_STARTED -> SUBMITTED -> ACCEPTED -> STAPLED
                             -> REJECTED
                (any wait)   -> ABORTED

Submission blocks until the notary service returns a verdict; there is no client
side timeout. An accepted submission is stapled exactly once, and a stapling
failure after acceptance is an integrity error, not something to retry.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from appseal.constants import NOTARY_ACCEPTED
from appseal.errors import (
    NotarizationAborted,
    NotarizationError,
    NotarizationRejected,
    OperationAborted,
    StaplingInconsistency,
)
from appseal.models import NotarizationState, NotarizationSubmission, NotarizationTicket, NotaryCredentials
from appseal.tools.notarytool import NotaryTool, NotaryVerdict, Stapler

logger = logging.getLogger(__name__)

# one submission in flight per container content
_in_flight: set[str] = set()
_in_flight_lock = threading.Lock()


def sha256sum(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for blk in iter(lambda: f.read(65536), b""):
            h.update(blk)
    return h.hexdigest()


@contextmanager
def _claim(digest: str) -> Iterator[None]:
    with _in_flight_lock:
        if digest in _in_flight:
            raise NotarizationError(f"a submission for content {digest[:12]} is already in flight")
        _in_flight.add(digest)
    try:
        yield
    finally:
        with _in_flight_lock:
            _in_flight.discard(digest)


class NotarizationSubmitter:
    def __init__(self, notary: NotaryTool, stapler: Stapler):
        self.notary = notary
        self.stapler = stapler

    def submit(
        self,
        container: Path,
        credentials: NotaryCredentials,
        *,
        cancel: threading.Event | None = None,
    ) -> NotarizationSubmission:
        """Submit and wait. Returns the submission in ACCEPTED or REJECTED state."""
        submission = NotarizationSubmission(container=container, sha256=sha256sum(container))
        with _claim(submission.sha256):
            submission.advance(NotarizationState.SUBMITTED)
            logger.info("⏳ Notarizing %s (SHA-256: %s)…", container.name, submission.sha256)
            try:
                verdict = self.notary.submit(container, credentials, cancel=cancel)
            except (OperationAborted, KeyboardInterrupt) as e:
                submission.advance(NotarizationState.ABORTED)
                raise NotarizationAborted(f"notarization of {container} aborted by operator") from e

        submission.submission_id = verdict.submission_id
        if verdict.status == NOTARY_ACCEPTED:
            submission.advance(NotarizationState.ACCEPTED)
            logger.info("Notarization accepted (submission %s)", verdict.submission_id)
        else:
            submission.reason = self._rejection_reason(verdict, credentials)
            submission.advance(NotarizationState.REJECTED)
            logger.error("Notarization rejected (submission %s): %s", verdict.submission_id, submission.reason)
        return submission

    def _rejection_reason(self, verdict: NotaryVerdict, credentials: NotaryCredentials) -> str:
        lines = [verdict.message or f"status: {verdict.status}"]
        log = self.notary.log(verdict.submission_id, credentials)
        for issue in log.get("issues") or []:
            where = issue.get("path") or issue.get("architecture") or ""
            lines.append(f"{where}: {issue.get('message', '')}" if where else issue.get("message", ""))
        return "\n".join(lines)

    def staple(self, submission: NotarizationSubmission) -> NotarizationTicket:
        if submission.state is not NotarizationState.ACCEPTED:
            raise ValueError(f"cannot staple a submission in state {submission.state.value}")
        container = submission.container
        ticket = NotarizationTicket(submission_id=submission.submission_id, container=container)

        if self.stapler.validate(container):
            logger.info("Ticket already stapled to %s", container.name)
        else:
            logger.info("📎 Stapling notarization ticket")
            ok, diag = self.stapler.staple(container)
            if not ok:
                raise StaplingInconsistency(container, diag)
        submission.ticket = ticket
        submission.advance(NotarizationState.STAPLED)
        return ticket

    def notarize(
        self,
        container: Path,
        credentials: NotaryCredentials,
        *,
        cancel: threading.Event | None = None,
    ) -> NotarizationSubmission:
        submission = self.submit(container, credentials, cancel=cancel)
        if submission.state is NotarizationState.REJECTED:
            raise NotarizationRejected(submission.reason, submission.submission_id)
        self.staple(submission)
        return submission
