from pathlib import Path

# ------------ tools ------------ #
CODESIGN = "/usr/bin/codesign"
SECURITY = "/usr/bin/security"
OPENSSL = "openssl"
DITTO = "ditto"
HDIUTIL = "hdiutil"
XCRUN = "/usr/bin/xcrun"
SPCTL = "spctl"
OPEN = "open"

# ------------ bundle layout ------------ #
CONTENTS_DIR = "Contents"
EXECUTABLES_DIR = "Contents/MacOS"
FRAMEWORKS_DIR = "Contents/Frameworks"
RESOURCES_DIR = "Contents/Resources"
INFO_PLIST = "Contents/Info.plist"
LIBRARY_SUFFIXES = (".framework", ".dylib")
MACHO_MAGICS = (
    b"\xfe\xed\xfa\xce",  # MH_MAGIC
    b"\xfe\xed\xfa\xcf",  # MH_MAGIC_64
    b"\xce\xfa\xed\xfe",  # MH_CIGAM
    b"\xcf\xfa\xed\xfe",  # MH_CIGAM_64
    b"\xca\xfe\xba\xbe",  # FAT_MAGIC
    b"\xbe\xba\xfe\xca",  # FAT_CIGAM
)

# ------------ signing ------------ #
ADHOC_IDENTITY = "-"
ANCHOR = "anchor apple generic"
TEAM_ID_PATTERN = r"\(([A-Z0-9]{10})\)\s*$"

# ------------ verification checks ------------ #
CHECK_STRUCTURAL = "structural"
CHECK_DEEP = "deep"
CHECK_REQUIREMENT = "requirement"
CHECK_RUNTIME = "runtime"
FATAL_CHECKS = (CHECK_STRUCTURAL, CHECK_DEEP, CHECK_REQUIREMENT)

# ------------ notarization ------------ #
NOTARY_ACCEPTED = "Accepted"
CANCEL_POLL_SECONDS = 1.0

# ------------ defaults ------------ #
DEFAULT_ARCHITECTURES = ("aarch64-apple-darwin", "x86_64-apple-darwin")
DEFAULT_CONFIG_NAMES = ("appseal.toml", "pyproject.toml")
DEFAULT_OUTPUT_DIR = Path("target")
DEFAULT_INSTALL_DIR = Path("/Applications")
DMG_STAGING_NAME = "dmg"
APPLICATIONS_LINK = "Applications"

# ------------ environment ------------ #
ENV_IDENTITY = "APPSEAL_IDENTITY"
ENV_TEAM_ID = "APPSEAL_TEAM_ID"
ENV_KEYCHAIN = "APPSEAL_KEYCHAIN"
ENV_NOTARY_KEY = "APPLE_NOTARIZATION_KEY"
ENV_NOTARY_KEY_ID = "APPLE_NOTARIZATION_KEY_ID"
ENV_NOTARY_ISSUER_ID = "APPLE_NOTARIZATION_ISSUER_ID"
