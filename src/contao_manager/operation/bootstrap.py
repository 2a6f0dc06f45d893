"""Bootstrap conventions of the managed edition, keyed by minimum platform version."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from contao_manager.errors import ConfigurationError

SETUP_SCRIPT = "@php vendor/bin/contao-setup"
LEGACY_SCRIPT = "Contao\\ManagerBundle\\Composer\\ScriptHandler::initializeApplication"
LEGACY_PUBLIC_DIR = "web"


@dataclass(slots=True, frozen=True)
class BootstrapPolicy:
    """Public directory and lifecycle hook for versions at or above ``min_version``.

    ``public_dir`` of None means the basename of the configured public directory.
    """

    min_version: tuple[int, ...]
    script: str
    public_dir: str | None = None

    def resolve_public_dir(self, configured_public_dir: Path) -> str:
        if self.public_dir is not None:
            return self.public_dir
        return configured_public_dir.name


# https://github.com/contao/contao-manager/issues/627
BOOTSTRAP_POLICIES: tuple[BootstrapPolicy, ...] = (
    BootstrapPolicy(min_version=(4, 12), script=SETUP_SCRIPT),
    BootstrapPolicy(min_version=(0,), script=LEGACY_SCRIPT, public_dir=LEGACY_PUBLIC_DIR),
)


def parse_version(version: str) -> tuple[int, ...]:
    try:
        return tuple(int(part) for part in version.split("."))
    except ValueError as error:
        raise ConfigurationError(f"Invalid version: {version!r}") from error


def policy_for(
    version: str,
    policies: tuple[BootstrapPolicy, ...] = BOOTSTRAP_POLICIES,
) -> BootstrapPolicy:
    """Pick the policy with the highest threshold not above ``version``."""

    parsed = parse_version(version)
    for policy in sorted(policies, key=lambda item: item.min_version, reverse=True):
        if parsed >= policy.min_version:
            return policy
    raise ConfigurationError(f"No bootstrap policy covers version {version}")
