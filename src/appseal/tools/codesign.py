"""
Adapter over `codesign` and `spctl`.

This is the only module that knows codesign's command-line flags or the shape of
its diagnostic text. Callers get exceptions, ``(passed, reason)`` pairs, or
``SignatureInfo`` values.
"""

from __future__ import annotations

import logging
import os
import plistlib
import re
import tempfile
from dataclasses import replace
from pathlib import Path

from appseal.constants import CODESIGN, SPCTL
from appseal.errors import SignFailure
from appseal.models import Entitlements, SignatureInfo
from appseal.tools.runner import CommandRunner, diagnostic

logger = logging.getLogger(__name__)

FLAGS_RE = re.compile(r"flags=0x[0-9a-fA-F]+\(([^)]*)\)")
NOT_SIGNED_MARKER = "not signed at all"


def parse_display(details: str) -> SignatureInfo:
    """Build a SignatureInfo from the `codesign -dvvv` details, which codesign prints on stderr."""
    fields: dict[str, str] = {}
    authorities: list[str] = []
    runtime = False
    for raw in details.splitlines():
        line = raw.strip()
        if "=" not in line:
            continue
        key, _, value = line.partition("=")
        if key == "Authority":
            authorities.append(value)
        elif key == "CodeDirectory v":
            m = FLAGS_RE.search(line)
            runtime = bool(m and "runtime" in m.group(1).split(","))
        else:
            fields.setdefault(key, value)

    adhoc = fields.get("Signature") == "adhoc"
    team_id = fields.get("TeamIdentifier")
    return SignatureInfo(
        identifier=fields.get("Identifier"),
        authority=None if adhoc or not authorities else authorities[0],
        team_id=None if team_id in (None, "not set") else team_id,
        timestamp="Timestamp" in fields,
        hardened_runtime=runtime,
    )


class Codesign:
    def __init__(self, runner: CommandRunner | None = None):
        self.runner = runner or CommandRunner()

    def sign(
        self,
        path: Path,
        identity: str,
        *,
        entitlements: Entitlements | None = None,
        hardened_runtime: bool = True,
        timestamp: bool = True,
        requirement: str | None = None,
        deep: bool = False,
    ) -> None:
        cmd: list[str | Path] = [CODESIGN, "--force", "--sign", identity]
        cmd.append("--timestamp" if timestamp else "--timestamp=none")
        if hardened_runtime:
            cmd += ["--options", "runtime"]
        if deep:
            cmd.append("--deep")
        if requirement:
            cmd += ["--requirements", f"=designated => {requirement}"]

        ent_file = None
        try:
            if entitlements is not None:
                fd, ent_file = tempfile.mkstemp(suffix=".entitlements")
                with os.fdopen(fd, "wb") as f:
                    f.write(entitlements.to_plist())
                cmd += ["--entitlements", ent_file]
            proc = self.runner.run([*cmd, "-v", path])
        finally:
            if ent_file:
                os.unlink(ent_file)

        if proc.returncode != 0:
            raise SignFailure(path, diagnostic(proc))

    def verify(
        self,
        path: Path,
        *,
        deep: bool = False,
        strict: bool = True,
        requirement: str | None = None,
    ) -> tuple[bool, str]:
        cmd: list[str | Path] = [CODESIGN, "--verify", "-vvv"]
        if deep:
            cmd.append("--deep")
        if strict:
            cmd.append("--strict")
        if requirement:
            cmd += ["-R", f"={requirement}"]
        proc = self.runner.run([*cmd, path])
        return proc.returncode == 0, diagnostic(proc)

    def display(self, path: Path) -> SignatureInfo | None:
        """Signature details, or None when the file carries no signature."""
        proc = self.runner.run([CODESIGN, "-d", "-vvv", path])
        if proc.returncode != 0:
            if NOT_SIGNED_MARKER not in proc.stderr:
                logger.warning("codesign --display failed for %s: %s", path, diagnostic(proc))
            return None
        info = parse_display(proc.stderr)

        ent = self.runner.run([CODESIGN, "-d", "--entitlements", "-", "--xml", path])
        if ent.returncode == 0 and ent.stdout.strip():
            try:
                data = plistlib.loads(ent.stdout.encode())
            except (plistlib.InvalidFileException, ValueError):
                logger.debug("unreadable entitlements on %s", path)
            else:
                info = replace(info, entitlements=data)
        return info

    def assess(self, path: Path) -> tuple[bool, str]:
        proc = self.runner.run([SPCTL, "-vvv", "--assess", "--type", "exec", path])
        return proc.returncode == 0, diagnostic(proc)
