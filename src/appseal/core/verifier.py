import logging
from pathlib import Path

from appseal.constants import (
    CHECK_DEEP,
    CHECK_REQUIREMENT,
    CHECK_RUNTIME,
    CHECK_STRUCTURAL,
    FATAL_CHECKS,
)
from appseal.core.assembler import AppBundle, designated_requirement
from appseal.errors import VerificationFailure
from appseal.models import CheckResult, Entitlements, VerificationReport
from appseal.tools.codesign import Codesign

logger = logging.getLogger(__name__)


class SignatureVerifier:
    def __init__(self, codesign: Codesign):
        self.codesign = codesign

    def _check(self, check: str, path: Path, **kwargs) -> CheckResult:
        passed, reason = self.codesign.verify(path, **kwargs)
        return CheckResult(check, path, passed, "" if passed else reason)

    def _signature_details(
        self,
        paths: list[Path],
        *,
        runtime: bool = True,
        team_id: str | None = None,
        entitlements: dict[Path, Entitlements] | None = None,
    ) -> CheckResult:
        """Runtime flag and timestamp on every path; team and entitlements where expected."""
        problems = []
        for path in paths:
            info = self.codesign.display(path)
            if info is None:
                problems.append(f"{path.name}: not signed")
                continue
            if runtime and not info.hardened_runtime:
                problems.append(f"{path.name}: hardened runtime not enabled")
            if not info.timestamp:
                problems.append(f"{path.name}: timestamp missing")
            if team_id and info.team_id != team_id:
                problems.append(f"{path.name}: team identifier {info.team_id or '(none)'}, expected {team_id}")
            expected = (entitlements or {}).get(path)
            if expected is not None and (info.entitlements or {}) != expected.as_dict():
                problems.append(f"{path.name}: entitlements do not match {expected.name}")
        return CheckResult(CHECK_RUNTIME, paths[-1], not problems, "; ".join(problems))

    def verify(
        self,
        bundle: AppBundle,
        *,
        team_id: str | None = None,
        entitlements: Entitlements | None = None,
    ) -> VerificationReport:
        """Run all four checks against a signed bundle; each one runs regardless of the others."""
        path = bundle.path
        report = VerificationReport(path)
        report.results.append(self._check(CHECK_STRUCTURAL, path))
        report.results.append(self._check(CHECK_DEEP, path, deep=True))
        report.results.append(
            self._check(CHECK_REQUIREMENT, path, requirement=designated_requirement(bundle.identifier))
        )
        expected = {bundle.main_executable: entitlements} if entitlements is not None else None
        report.results.append(
            self._signature_details([bundle.main_executable, path], team_id=team_id, entitlements=expected)
        )
        for r in report.results:
            logger.debug("%s check on %s: %s", r.check, r.path, "ok" if r.passed else r.reason)
        return report

    def verify_binary(
        self,
        path: Path,
        *,
        team_id: str | None = None,
        entitlements: Entitlements | None = None,
    ) -> VerificationReport:
        """A standalone executable: structural validity plus runtime, timestamp, team and entitlements."""
        report = VerificationReport(path)
        report.results.append(self._check(CHECK_STRUCTURAL, path))
        expected = {path: entitlements} if entitlements is not None else None
        report.results.append(self._signature_details([path], team_id=team_id, entitlements=expected))
        return report

    def verify_container(self, image: Path) -> VerificationReport:
        """Disk images carry a flat signature: structural validity plus a secure timestamp."""
        report = VerificationReport(image)
        report.results.append(self._check(CHECK_STRUCTURAL, image))
        report.results.append(self._signature_details([image], runtime=False))
        return report

    def assess(self, path: Path) -> bool:
        """Gatekeeper opinion; informational only before notarization."""
        accepted, reason = self.codesign.assess(path)
        logger.info("🔒  Gatekeeper: %s", "accepted" if accepted else "rejected (pre-notarization)")
        if not accepted:
            logger.debug("spctl: %s", reason)
        return accepted


def enforce(report: VerificationReport, *, distribution: bool, adhoc: bool = False) -> list[str]:
    """
    Apply the verification policy and return the non-fatal findings.

    Structural and deep failures are always fatal. Requirement failures are fatal
    unless the bundle is ad-hoc signed, where they are expected. The runtime and
    timestamp check is fatal only for distribution runs.
    """
    warnings = []
    for failure in report.failures():
        fatal = failure.check in FATAL_CHECKS or distribution
        if adhoc and failure.check in (CHECK_REQUIREMENT, CHECK_RUNTIME):
            fatal = False
        if fatal:
            raise VerificationFailure(failure.check, failure.path, failure.reason)
        warnings.append(f"{failure.check} check failed for {failure.path}: {failure.reason}")
    return warnings
