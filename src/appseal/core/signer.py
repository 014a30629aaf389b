import logging

from appseal.constants import ADHOC_IDENTITY
from appseal.errors import ConfigurationError, SignFailure
from appseal.models import Artifact, Entitlements, SigningIdentity
from appseal.tools.codesign import Codesign

logger = logging.getLogger(__name__)


class BinarySigner:
    """Signs exactly one artifact per call, always overwriting an existing signature."""

    def __init__(self, codesign: Codesign):
        self.codesign = codesign

    def sign(
        self,
        artifact: Artifact,
        identity: SigningIdentity,
        *,
        entitlements: Entitlements | None = None,
        timestamp: bool = True,
        requirement: str | None = None,
    ) -> None:
        if not artifact.path.exists():
            raise SignFailure(artifact.path, "artifact not found")
        if entitlements is not None and not artifact.entitled:
            raise ConfigurationError(f"Entitlements cannot be attached to {artifact.kind.name.lower()} {artifact.path}")

        logger.info("   ↳ %-16s %s", artifact.kind.name.lower(), artifact.path)
        self.codesign.sign(
            artifact.path,
            identity.sha1,
            entitlements=entitlements,
            hardened_runtime=artifact.hardened,
            timestamp=timestamp,
            requirement=requirement,
        )

    def sign_adhoc(self, artifact: Artifact) -> None:
        """Self-signed, identity-less signature over everything in the artifact. Local testing only."""
        if not artifact.path.exists():
            raise SignFailure(artifact.path, "artifact not found")
        logger.warning("Signing with ad-hoc signature (not for distribution): %s", artifact.path)
        self.codesign.sign(artifact.path, ADHOC_IDENTITY, hardened_runtime=False, timestamp=False, deep=True)
