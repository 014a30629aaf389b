"""
Inside-out bundle signing.

A container's signature seals the current contents of everything nested in it,
so nested code has to carry its final signature before the container is signed.
``SigningPlan`` refuses to exist in any other order: helpers, then libraries
(deepest first), then the main executable, then the bundle itself.
"""

from __future__ import annotations

import logging
import plistlib
from dataclasses import dataclass
from pathlib import Path

from appseal.constants import (
    ANCHOR,
    EXECUTABLES_DIR,
    FRAMEWORKS_DIR,
    INFO_PLIST,
    LIBRARY_SUFFIXES,
    MACHO_MAGICS,
)
from appseal.core.signer import BinarySigner
from appseal.errors import ConfigurationError
from appseal.models import Artifact, ArtifactKind, Entitlements, SigningIdentity

logger = logging.getLogger(__name__)


def designated_requirement(bundle_id: str) -> str:
    return f'identifier "{bundle_id}" and {ANCHOR}'


def is_macho(path: Path) -> bool:
    try:
        with path.open("rb") as f:
            return f.read(4) in MACHO_MAGICS
    except OSError:
        return False


@dataclass(frozen=True)
class AppBundle:
    path: Path
    identifier: str
    executable: str

    @classmethod
    def load(cls, path: Path, fallback_identifier: str | None = None) -> AppBundle:
        path = Path(path)
        info = path / INFO_PLIST
        if not path.is_dir():
            raise ConfigurationError(f"Application bundle not found: {path}")
        data: dict = {}
        if info.is_file():
            try:
                with info.open("rb") as f:
                    data = plistlib.load(f)
            except (plistlib.InvalidFileException, ValueError) as e:
                raise ConfigurationError(f"Unreadable {info}: {e}") from e

        identifier = data.get("CFBundleIdentifier") or fallback_identifier
        if not identifier:
            raise ConfigurationError(f"No CFBundleIdentifier in {info} and no bundle_identifier configured")
        executable = data.get("CFBundleExecutable") or path.stem
        return cls(path=path, identifier=identifier, executable=executable)

    @property
    def main_executable(self) -> Path:
        return self.path / EXECUTABLES_DIR / self.executable

    def helpers(self) -> list[Path]:
        exe_dir = self.path / EXECUTABLES_DIR
        if not exe_dir.is_dir():
            return []
        return sorted(
            p
            for p in exe_dir.iterdir()
            if p.is_file() and not p.is_symlink() and p != self.main_executable and is_macho(p)
        )

    def libraries(self) -> list[Path]:
        fw_dir = self.path / FRAMEWORKS_DIR
        if not fw_dir.is_dir():
            return []
        found = {p for suffix in LIBRARY_SUFFIXES for p in fw_dir.rglob(f"*{suffix}") if not p.is_symlink()}
        # deepest first so a framework's own dylibs precede the framework
        return sorted(found, key=lambda p: (-len(p.parts), str(p)))


@dataclass(frozen=True)
class PlanStep:
    artifact: Artifact
    entitlements: Entitlements | None = None
    requirement: str | None = None


class SigningPlan:
    """An ordered, validated sequence of signing steps for one bundle."""

    def __init__(self, steps: list[PlanStep]):
        self.steps = tuple(steps)
        self._validate()

    def _validate(self) -> None:
        if not self.steps or self.steps[-1].artifact.kind is not ArtifactKind.BUNDLE:
            raise ValueError("signing plan must end with the bundle container")
        for i, step in enumerate(self.steps):
            prev = self.steps[i - 1] if i else None
            if prev and step.artifact.kind.value < prev.artifact.kind.value:
                raise ValueError(
                    f"{step.artifact.path} ({step.artifact.kind.name}) scheduled after {prev.artifact.kind.name}"
                )
            for later in self.steps[i + 1 :]:
                if step.artifact.contains(later.artifact):
                    raise ValueError(f"{step.artifact.path} would be signed before nested {later.artifact.path}")

    def __iter__(self):
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def artifacts(self) -> list[Artifact]:
        return [s.artifact for s in self.steps]


def build_plan(bundle: AppBundle, entitlements: Entitlements) -> SigningPlan:
    if not bundle.main_executable.is_file():
        raise ConfigurationError(f"Main executable missing: {bundle.main_executable}")

    steps = [PlanStep(Artifact(p, ArtifactKind.HELPER)) for p in bundle.helpers()]
    steps += [PlanStep(Artifact(p, ArtifactKind.LIBRARY)) for p in bundle.libraries()]
    steps.append(
        PlanStep(Artifact(bundle.main_executable, ArtifactKind.MAIN_EXECUTABLE, entitled=True), entitlements)
    )
    steps.append(
        PlanStep(
            Artifact(bundle.path, ArtifactKind.BUNDLE, entitled=True),
            entitlements,
            requirement=designated_requirement(bundle.identifier),
        )
    )
    return SigningPlan(steps)


class BundleAssembler:
    def __init__(self, signer: BinarySigner):
        self.signer = signer

    def assemble(
        self,
        bundle: AppBundle,
        identity: SigningIdentity | None,
        entitlements: Entitlements | None,
    ) -> SigningPlan | None:
        """Sign the bundle inside-out, or ad-hoc when there is no identity. Returns the executed plan."""
        if identity is None:
            self.signer.sign_adhoc(Artifact(bundle.path, ArtifactKind.BUNDLE, hardened=False))
            return None
        if entitlements is None:
            raise ConfigurationError("Entitlements are required to sign with an identity")

        plan = build_plan(bundle, entitlements)
        logger.info("✍️  Signing %d artifacts inside-out in %s", len(plan), bundle.path)
        for step in plan:
            self.signer.sign(
                step.artifact,
                identity,
                entitlements=step.entitlements,
                requirement=step.requirement,
            )
        return plan
