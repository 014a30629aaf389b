"""Data models for the signing and notarization pipeline."""

import json
import plistlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from appseal.errors import ConfigurationError


class ArtifactKind(Enum):
    """Anything that receives a signature. Values are the inside-out signing stage."""

    HELPER = 1
    LIBRARY = 2
    MAIN_EXECUTABLE = 3
    BUNDLE = 4
    DISK_IMAGE = 5
    # signed on its own, outside any bundle
    STANDALONE = 6


@dataclass(frozen=True)
class SigningIdentity:
    """A certificate + private key pair found in the keychain."""

    name: str
    sha1: str
    team_id: Optional[str] = None
    not_before: Optional[datetime] = None
    not_after: Optional[datetime] = None

    def is_valid_at(self, when: datetime) -> bool:
        if self.not_before and when < self.not_before:
            return False
        if self.not_after and when > self.not_after:
            return False
        return True


@dataclass(frozen=True)
class NotaryCredentials:
    """App Store Connect API key used by notarytool."""

    key: Optional[str] = None
    key_id: Optional[str] = None
    issuer_id: Optional[str] = None

    @property
    def complete(self) -> bool:
        return bool(self.key and self.key_id and self.issuer_id)

    def __repr__(self) -> str:
        # keep the key material out of logs and tracebacks
        return f"NotaryCredentials(key={'***' if self.key else None}, key_id={self.key_id!r}, issuer_id={self.issuer_id!r})"


@dataclass(frozen=True)
class Capabilities:
    can_sign: bool
    can_notarize: bool
    identity: Optional[SigningIdentity] = None
    warnings: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Entitlements:
    """Immutable set of capability grants, as declared in a .entitlements plist."""

    name: str
    grants: Tuple[Tuple[str, Any], ...]

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "Entitlements":
        return cls(name=name, grants=tuple(sorted(data.items())))

    @classmethod
    def from_file(cls, path: Path) -> "Entitlements":
        path = Path(path)
        if not path.is_file():
            raise ConfigurationError(f"Missing entitlements: {path}")
        try:
            with path.open("rb") as f:
                data = plistlib.load(f)
        except (plistlib.InvalidFileException, ValueError) as e:
            raise ConfigurationError(f"Malformed entitlements {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Entitlements root must be a dictionary: {path}")
        return cls.from_dict(path.name, data)

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.grants)

    def to_plist(self) -> bytes:
        return plistlib.dumps(self.as_dict())

    def __contains__(self, key: str) -> bool:
        return key in self.as_dict()


@dataclass(frozen=True)
class Artifact:
    path: Path
    kind: ArtifactKind
    entitled: bool = False
    hardened: bool = True

    def contains(self, other: "Artifact") -> bool:
        """True if *other* lives strictly inside this artifact."""
        return other.path != self.path and other.path.is_relative_to(self.path)


@dataclass(frozen=True)
class SignatureInfo:
    """What `codesign --display` reports about one signature."""

    identifier: Optional[str]
    authority: Optional[str]
    team_id: Optional[str] = None
    timestamp: bool = False
    hardened_runtime: bool = False
    entitlements: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class CheckResult:
    check: str
    path: Path
    passed: bool
    reason: str = ""


@dataclass
class VerificationReport:
    path: Path
    results: List[CheckResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(r.passed for r in self.results)

    def failures(self) -> List[CheckResult]:
        return [r for r in self.results if not r.passed]


class NotarizationState(Enum):
    NOT_STARTED = "not_started"
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    STAPLED = "stapled"
    ABORTED = "aborted"


_TRANSITIONS = {
    NotarizationState.NOT_STARTED: {NotarizationState.SUBMITTED, NotarizationState.ABORTED},
    NotarizationState.SUBMITTED: {
        NotarizationState.ACCEPTED,
        NotarizationState.REJECTED,
        NotarizationState.ABORTED,
    },
    NotarizationState.ACCEPTED: {NotarizationState.STAPLED},
}


@dataclass(frozen=True)
class NotarizationTicket:
    submission_id: str
    container: Path


@dataclass
class NotarizationSubmission:
    container: Path
    sha256: str
    state: NotarizationState = NotarizationState.NOT_STARTED
    submission_id: Optional[str] = None
    reason: Optional[str] = None
    ticket: Optional[NotarizationTicket] = None

    @property
    def status(self) -> str:
        """Terminal status as seen by the notary service: pending, accepted or rejected."""
        if self.state in (NotarizationState.ACCEPTED, NotarizationState.STAPLED):
            return "accepted"
        if self.state is NotarizationState.REJECTED:
            return "rejected"
        return "pending"

    def advance(self, new_state: NotarizationState) -> None:
        if new_state not in _TRANSITIONS.get(self.state, set()):
            raise ValueError(f"illegal notarization transition {self.state.value} -> {new_state.value}")
        self.state = new_state


@dataclass
class RunResult:
    """Outcome of one architecture's pipeline."""

    arch: str
    bundle: Path
    mode: str = "identity"  # "identity" or "ad-hoc"
    container: Optional[Path] = None
    binaries: List[Path] = field(default_factory=list)
    distributable: bool = False
    notarized: bool = False
    stapled: bool = False
    submission_id: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None
    aborted: bool = False
    finished: Optional[datetime] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def finish(self) -> None:
        self.finished = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "arch": self.arch,
            "bundle": str(self.bundle),
            "mode": self.mode,
            "container": str(self.container) if self.container else None,
            "binaries": [str(b) for b in self.binaries],
            "distributable": self.distributable,
            "notarized": self.notarized,
            "stapled": self.stapled,
            "submission_id": self.submission_id,
            "warnings": self.warnings,
            "error": self.error,
            "aborted": self.aborted,
            "finished": self.finished.isoformat() if self.finished else None,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)
