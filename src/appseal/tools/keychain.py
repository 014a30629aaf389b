"""Adapter over `security` (and `openssl`) for code-signing identity lookup."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from pathlib import Path

from appseal.constants import OPENSSL, SECURITY, TEAM_ID_PATTERN
from appseal.models import SigningIdentity
from appseal.tools.runner import CommandRunner, diagnostic

logger = logging.getLogger(__name__)

IDENTITY_RE = re.compile(r'^\s*\d+\)\s+([0-9A-Fa-f]{40})\s+"(.+)"\s*$')
DATE_RE = re.compile(r"^(notBefore|notAfter)=(.+)$")


def team_id_from_subject(subject: str) -> str | None:
    m = re.search(TEAM_ID_PATTERN, subject)
    return m.group(1) if m else None


def parse_identities(output: str) -> list[SigningIdentity]:
    seen: dict[str, SigningIdentity] = {}
    for line in output.splitlines():
        m = IDENTITY_RE.match(line)
        if not m:
            continue
        sha1, name = m.group(1).upper(), m.group(2)
        # the same certificate is listed once per keychain that holds it
        seen.setdefault(sha1, SigningIdentity(name=name, sha1=sha1, team_id=team_id_from_subject(name)))
    return list(seen.values())


def _parse_openssl_date(value: str) -> datetime:
    # "Jan  5 12:00:00 2027 GMT"
    return datetime.strptime(" ".join(value.split()), "%b %d %H:%M:%S %Y %Z").replace(tzinfo=timezone.utc)


def parse_validity(output: str) -> tuple[datetime, datetime] | None:
    dates: dict[str, datetime] = {}
    for line in output.splitlines():
        m = DATE_RE.match(line.strip())
        if m:
            try:
                dates[m.group(1)] = _parse_openssl_date(m.group(2))
            except ValueError:
                logger.debug("unparseable certificate date %r", m.group(2))
    if "notBefore" in dates and "notAfter" in dates:
        return dates["notBefore"], dates["notAfter"]
    return None


class Keychain:
    def __init__(self, runner: CommandRunner | None = None):
        self.runner = runner or CommandRunner()

    def identities(self, keychain: Path | None = None) -> list[SigningIdentity]:
        """Valid code-signing identities; an unusable `security` yields an empty list."""
        cmd = [SECURITY, "find-identity", "-v", "-p", "codesigning"]
        if keychain:
            cmd.append(keychain)
        proc = self.runner.run(cmd)
        if proc.returncode != 0:
            logger.warning("security find-identity failed: %s", diagnostic(proc))
            return []
        return parse_identities(proc.stdout)

    def validity(self, name: str, keychain: Path | None = None) -> tuple[datetime, datetime] | None:
        cmd = [SECURITY, "find-certificate", "-c", name, "-p"]
        if keychain:
            cmd.append(keychain)
        pem = self.runner.run(cmd)
        if pem.returncode != 0 or "BEGIN CERTIFICATE" not in pem.stdout:
            return None
        dates = self.runner.run([OPENSSL, "x509", "-noout", "-startdate", "-enddate"], input=pem.stdout)
        if dates.returncode != 0:
            logger.debug("openssl could not read certificate for %s: %s", name, diagnostic(dates))
            return None
        return parse_validity(dates.stdout)
