import logging
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

from appseal.errors import ConfigurationError
from appseal.models import Capabilities, NotaryCredentials, SigningIdentity
from appseal.tools.keychain import Keychain

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Decides what this run is able to do; absence degrades, it never fails."""

    def __init__(self, keychain: Keychain):
        self.keychain = keychain

    def find(self, label: str, keychain_path: Path | None = None) -> SigningIdentity | None:
        matches = [
            ident
            for ident in self.keychain.identities(keychain_path)
            if label in ident.name or label.upper() == ident.sha1
        ]
        if len(matches) > 1:
            names = ", ".join(f'"{m.name}"' for m in matches)
            raise ConfigurationError(f"Identity label {label!r} is ambiguous: {names}")
        return matches[0] if matches else None

    def resolve(
        self,
        label: str | None,
        credentials: NotaryCredentials,
        *,
        keychain_path: Path | None = None,
        expected_team_id: str | None = None,
        now: datetime | None = None,
    ) -> Capabilities:
        warnings: list[str] = []
        can_notarize = credentials.complete
        if can_notarize:
            logger.info("Notarization credentials available")
        else:
            warnings.append("Notarization credentials not found; disk image won't be notarized")

        identity = self.find(label, keychain_path) if label else None
        if identity is None:
            warnings.append(
                f"Signing identity {label!r} not found in keychain" if label else "No signing identity configured"
            )
            return self._degraded(can_notarize, warnings)

        validity = self.keychain.validity(identity.name, keychain_path)
        if validity:
            identity = replace(identity, not_before=validity[0], not_after=validity[1])
            if not identity.is_valid_at(now or datetime.now(timezone.utc)):
                warnings.append(f"Certificate for {identity.name!r} is outside its validity window")
                return self._degraded(can_notarize, warnings)

        if expected_team_id and identity.team_id != expected_team_id:
            warnings.append(
                f"Team ID mismatch: certificate {identity.team_id or '(none)'}, expected {expected_team_id}"
            )

        logger.info("Signing identity found in keychain: %s", identity.name)
        for w in warnings:
            logger.warning(w)
        return Capabilities(can_sign=True, can_notarize=can_notarize, identity=identity, warnings=tuple(warnings))

    @staticmethod
    def _degraded(can_notarize: bool, warnings: list[str]) -> Capabilities:
        for w in warnings:
            logger.warning(w)
        logger.warning("Falling back to ad-hoc signing (not for distribution)")
        return Capabilities(can_sign=False, can_notarize=can_notarize, warnings=tuple(warnings))
