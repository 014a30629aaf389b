"""
Pipeline orchestrator.

Per architecture the steps form a strict chain:

    resolve identity -> sign inside-out -> verify -> [install/open]
                                                  -> package -> verify image -> notarize -> staple

Architectures are independent and run concurrently; a fatal error ends only the
pipeline it happened in.
"""

from __future__ import annotations

import logging
import shutil
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from appseal.config import PipelineConfig
from appseal.core.assembler import AppBundle, BundleAssembler
from appseal.core.identity import IdentityResolver
from appseal.core.notary import NotarizationSubmitter
from appseal.core.packager import ArchivePackager
from appseal.core.signer import BinarySigner
from appseal.core.verifier import SignatureVerifier, enforce
from appseal.errors import (
    AppsealError,
    ConfigurationError,
    InstallFailure,
    NotarizationRejected,
    OperationAborted,
    StaplingInconsistency,
)
from appseal.models import Artifact, ArtifactKind, Capabilities, Entitlements, RunResult, SigningIdentity
from appseal.tools.toolchain import Toolchain

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Target:
    arch: str
    bundle: Path
    binaries: tuple[Path, ...] = ()


class Pipeline:
    def __init__(
        self,
        config: PipelineConfig,
        toolchain: Toolchain,
        *,
        cancel: threading.Event | None = None,
    ):
        self.config = config
        self.tools = toolchain
        self.cancel = cancel or threading.Event()

        self.signer = BinarySigner(toolchain.codesign)
        self.resolver = IdentityResolver(toolchain.keychain)
        self.assembler = BundleAssembler(self.signer)
        self.verifier = SignatureVerifier(toolchain.codesign)
        self.packager = ArchivePackager(toolchain.diskimage, self.signer)
        self.submitter = NotarizationSubmitter(toolchain.notary, toolchain.stapler)

    def capabilities(self) -> Capabilities:
        return self.resolver.resolve(
            self.config.identity,
            self.config.notary,
            keychain_path=self.config.keychain,
            expected_team_id=self.config.expected_team_id,
        )

    # ------------------------------------------------------------------ #
    # One architecture
    # ------------------------------------------------------------------ #
    def run(self, target: Target, capabilities: Capabilities | None = None) -> RunResult:
        result = RunResult(arch=target.arch, bundle=target.bundle)
        try:
            self._run(target, capabilities or self.capabilities(), result)
        except NotarizationRejected as e:
            result.submission_id = e.submission_id
            result.error = f"notarization rejected: {e.reason}"
        except StaplingInconsistency as e:
            result.notarized = True
            result.error = str(e)
            logger.critical("[%s] %s", target.arch, e)
        except OperationAborted as e:
            result.aborted = True
            result.error = str(e)
        except AppsealError as e:
            result.error = str(e)
        finally:
            result.finish()
        if result.error:
            logger.error("[%s] ✖ %s", target.arch, result.error)
        return result

    def _run(self, target: Target, caps: Capabilities, result: RunResult) -> None:
        cfg = self.config
        result.warnings.extend(caps.warnings)
        bundle = AppBundle.load(target.bundle, cfg.bundle_identifier)

        identity = caps.identity if caps.can_sign else None
        entitlements = None
        if identity is not None:
            if cfg.entitlements is None:
                raise ConfigurationError("No entitlements file configured")
            entitlements = Entitlements.from_file(cfg.entitlements)

        logger.info("====== Signing app binaries for %s ======", target.arch)
        result.mode = "identity" if identity else "ad-hoc"
        self.assembler.assemble(bundle, identity, entitlements)

        logger.info("🔍 Verifying signatures…")
        report = self.verifier.verify(
            bundle, team_id=identity.team_id if identity else None, entitlements=entitlements
        )
        result.warnings.extend(enforce(report, distribution=cfg.distribution, adhoc=identity is None))
        result.distributable = identity is not None
        if identity is None:
            result.warnings.append("ad-hoc signature: output is not distributable")
        else:
            self.verifier.assess(bundle.path)

        if target.binaries:
            self._sign_binaries(target, identity, entitlements, result)

        if not cfg.release and not cfg.local_only:
            # debug artifacts stop at a signed bundle
            if cfg.open_result:
                self.tools.diskimage.open(bundle.path)
            logger.info("Created application bundle: %s", bundle.path)
            return

        if cfg.local_only:
            self._deliver_locally(bundle, result)
            return

        bundle_name = cfg.output_bundle_name(bundle.path)
        volume = cfg.volume_name or Path(bundle_name).stem
        image = cfg.output_dir / target.arch / cfg.target_dir / f"{volume}.dmg"
        result.container = self.packager.package(
            bundle.path, image, volume_name=volume, bundle_name=bundle_name, identity=identity
        )
        if identity is not None:
            result.warnings.extend(enforce(self.verifier.verify_container(image), distribution=True))
            self._notarize(image, caps, result)

        if cfg.open_result:
            self.tools.diskimage.open(image.parent)

    def _notarize(self, image: Path, caps: Capabilities, result: RunResult) -> None:
        if not caps.can_notarize:
            result.warnings.append(f"unnotarized: {image.name} will be rejected by Gatekeeper on other machines")
            logger.warning("Skipping notarization: credentials not available")
            return
        submission = self.submitter.notarize(image, self.config.notary, cancel=self.cancel)
        result.submission_id = submission.submission_id
        result.notarized = True
        result.stapled = submission.ticket is not None

    def _sign_binaries(
        self,
        target: Target,
        identity: SigningIdentity | None,
        entitlements: Entitlements | None,
        result: RunResult,
    ) -> None:
        """Executables shipped outside the bundle get the main executable's signature and entitlements."""
        if identity is None:
            for path in target.binaries:
                result.warnings.append(f"{path.name} left unsigned: no signing identity")
            logger.warning("Skipping standalone binaries: no signing identity")
            return

        logger.info("====== Signing standalone binaries for %s ======", target.arch)
        for path in target.binaries:
            artifact = Artifact(path, ArtifactKind.STANDALONE, entitled=True)
            self.signer.sign(artifact, identity, entitlements=entitlements)
            report = self.verifier.verify_binary(path, team_id=identity.team_id, entitlements=entitlements)
            result.warnings.extend(enforce(report, distribution=self.config.distribution))
            result.binaries.append(path)

    def _deliver_locally(self, bundle: AppBundle, result: RunResult) -> None:
        cfg = self.config
        app = bundle.path
        if cfg.install:
            dest = cfg.install_dir / cfg.output_bundle_name(app)
            install_bundle(app, dest)
            logger.info("Installed: %s", dest)
            result.bundle = app = dest
        if cfg.open_result:
            self.tools.diskimage.open(app)

    # ------------------------------------------------------------------ #
    # All architectures
    # ------------------------------------------------------------------ #
    def run_all(self, targets: list[Target]) -> list[RunResult]:
        caps = self.capabilities()
        if len(targets) == 1:
            return [self.run(targets[0], caps)]

        with ThreadPoolExecutor(max_workers=len(targets), thread_name_prefix="appseal") as pool:
            futures = [pool.submit(self.run, t, caps) for t in targets]
            try:
                return [f.result() for f in futures]
            except KeyboardInterrupt:
                self.cancel.set()
                raise


def install_bundle(app: Path, dest: Path) -> None:
    """
    Move a signed bundle to ``dest``, replacing whatever is installed there.

    The new copy is staged next to ``dest`` and swapped in with renames, so a
    failure at any point leaves the previous install and the source bundle intact.
    """
    staging = dest.with_name(f".{dest.name}.appseal-tmp")
    backup = dest.with_name(f".{dest.name}.appseal-old")
    try:
        for leftover in (staging, backup):
            if leftover.exists():
                shutil.rmtree(leftover)
        shutil.copytree(app, staging, symlinks=True)
        if dest.exists():
            dest.rename(backup)
        try:
            staging.rename(dest)
        except OSError:
            if backup.exists():
                backup.rename(dest)
            raise
    except OSError as e:
        shutil.rmtree(staging, ignore_errors=True)
        raise InstallFailure(dest, str(e)) from e

    shutil.rmtree(backup, ignore_errors=True)
    try:
        shutil.rmtree(app)
    except OSError as e:
        logger.warning("Installed %s, but could not remove %s: %s", dest, app, e)


def exit_code(results: list[RunResult]) -> int:
    if any(r.aborted for r in results):
        return 130
    return 0 if all(r.ok for r in results) else 1
