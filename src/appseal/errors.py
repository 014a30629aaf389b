"""Error taxonomy for the signing and notarization pipeline."""

from pathlib import Path


class AppsealError(Exception):
    """Base class for every fatal pipeline error."""


class ConfigurationError(AppsealError):
    """Missing or invalid inputs: entitlements, config file, identity, bundle manifest."""


class SignFailure(AppsealError):
    def __init__(self, artifact_path: Path, diagnostic: str):
        self.artifact_path = Path(artifact_path)
        self.diagnostic = diagnostic
        super().__init__(f"signing failed for {self.artifact_path}: {diagnostic}")


class VerificationFailure(AppsealError):
    def __init__(self, check: str, artifact_path: Path, reason: str):
        self.check = check
        self.artifact_path = Path(artifact_path)
        self.reason = reason
        super().__init__(f"{check} check failed for {self.artifact_path}: {reason}")


class PackagingFailure(AppsealError):
    def __init__(self, path: Path, diagnostic: str):
        self.path = Path(path)
        self.diagnostic = diagnostic
        super().__init__(f"packaging failed for {self.path}: {diagnostic}")


class NotarizationError(AppsealError):
    """Base for failures of the remote notarization step."""


class NotarizationRejected(NotarizationError):
    def __init__(self, reason: str, submission_id: str | None = None):
        # reason is the notary service's text, kept verbatim
        self.reason = reason
        self.submission_id = submission_id
        super().__init__(reason)


class OperationAborted(AppsealError):
    """The operator cancelled a blocking step."""


class NotarizationAborted(NotarizationError, OperationAborted):
    """The operator cancelled while waiting for a verdict."""


class StaplingInconsistency(AppsealError):
    def __init__(self, container: Path, diagnostic: str):
        self.container = Path(container)
        self.diagnostic = diagnostic
        super().__init__(f"accepted submission could not be stapled to {self.container}: {diagnostic}")


class InstallFailure(AppsealError):
    def __init__(self, path: Path, diagnostic: str):
        self.path = Path(path)
        self.diagnostic = diagnostic
        super().__init__(f"install failed for {self.path}: {diagnostic}")
