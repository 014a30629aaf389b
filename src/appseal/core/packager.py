import logging
import shutil
from pathlib import Path

from appseal.constants import APPLICATIONS_LINK, DEFAULT_INSTALL_DIR, DMG_STAGING_NAME
from appseal.core.signer import BinarySigner
from appseal.errors import PackagingFailure, SignFailure
from appseal.models import Artifact, ArtifactKind, SigningIdentity
from appseal.tools.diskimage import DiskImageTool

logger = logging.getLogger(__name__)


class ArchivePackager:
    def __init__(self, diskimage: DiskImageTool, signer: BinarySigner):
        self.diskimage = diskimage
        self.signer = signer

    def stage(self, bundle: Path, staging: Path, bundle_name: str) -> Path:
        if staging.exists():
            shutil.rmtree(staging)
        staging.mkdir(parents=True)
        staged = staging / bundle_name
        ok, diag = self.diskimage.copy(bundle, staged)
        if not ok:
            raise PackagingFailure(staged, diag)
        (staging / APPLICATIONS_LINK).symlink_to(DEFAULT_INSTALL_DIR)
        return staged

    def package(
        self,
        bundle: Path,
        image: Path,
        *,
        volume_name: str,
        bundle_name: str | None = None,
        identity: SigningIdentity | None = None,
    ) -> Path:
        """Wrap a finalized bundle in a compressed read-only disk image, then sign the image itself."""
        image.parent.mkdir(parents=True, exist_ok=True)
        staging = image.parent / DMG_STAGING_NAME
        try:
            self.stage(bundle, staging, bundle_name or bundle.name)
            # overwrite, never merge into, a previous image
            image.unlink(missing_ok=True)
            logger.info("📦 Creating disk image %s", image)
            ok, diag = self.diskimage.create(volume_name, staging, image)
            if not ok:
                raise PackagingFailure(image, diag)
        except PackagingFailure:
            image.unlink(missing_ok=True)
            raise
        except OSError as e:
            image.unlink(missing_ok=True)
            raise PackagingFailure(image, str(e)) from e
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        if identity is not None:
            logger.info("✍️  Signing disk image")
            try:
                self.signer.sign(Artifact(image, ArtifactKind.DISK_IMAGE, hardened=False), identity, timestamp=True)
            except SignFailure:
                # no unsigned image is left at the distribution path
                image.unlink(missing_ok=True)
                raise
        return image
