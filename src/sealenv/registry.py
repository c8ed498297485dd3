# src/sealenv/registry.py
"""The trusted-recipient registry and the sops configuration derived from it."""

import logging
from pathlib import Path
from typing import Dict, List

import yaml

from . import agekeys
from .errors import ConfigError, ValidationError
from .fs import atomic_write

logger = logging.getLogger(__name__)

REGISTRY_FILE = "recipients.yaml"
SOPS_CONFIG_FILE = ".sops.yaml"


class RecipientRegistry:
    """
    Maps each known public identifier to whether new documents are encrypted
    to it. Saving also writes `.sops.yaml` so that sops run by hand in the
    secrets directory encrypts to the same active recipients.
    """

    def __init__(self, secrets_dir: Path, entries: Dict[str, bool] | None = None):
        self.secrets_dir = Path(secrets_dir)
        self.entries: Dict[str, bool] = dict(entries or {})

    @property
    def path(self) -> Path:
        return self.secrets_dir / REGISTRY_FILE

    @property
    def sops_config_path(self) -> Path:
        return self.secrets_dir / SOPS_CONFIG_FILE

    @classmethod
    def load(cls, secrets_dir: Path) -> "RecipientRegistry":
        registry = cls(secrets_dir)
        if not registry.path.is_file():
            return registry
        try:
            data = yaml.safe_load(registry.path.read_text()) or {}
            recipients = data.get("recipients") or {}
            registry.entries = {str(k): bool(v) for k, v in recipients.items()}
        except (yaml.YAMLError, AttributeError) as e:
            raise ConfigError(f"Failed to parse recipient registry '{registry.path}': {e}") from e
        return registry

    def copy(self) -> "RecipientRegistry":
        return RecipientRegistry(self.secrets_dir, self.entries)

    def active(self) -> List[str]:
        return [identifier for identifier, active in self.entries.items() if active]

    def add(self, identifier: str, active: bool = True) -> None:
        if not agekeys.is_recipient(identifier):
            raise ValidationError(f"'{identifier}' is not a valid age recipient.")
        self.entries[identifier] = active

    def deactivate(self, identifier: str) -> None:
        if identifier in self.entries:
            self.entries[identifier] = False

    def render_sops_config(self) -> str:
        active = self.active()
        if not active:
            return "creation_rules: []\n"
        return f"creation_rules:\n  - age: {','.join(active)}\n"

    def save(self) -> None:
        content = yaml.safe_dump({"recipients": self.entries}, sort_keys=False)
        atomic_write(self.path, content.encode("utf-8"), mode=0o644)
        atomic_write(self.sops_config_path, self.render_sops_config().encode("utf-8"), mode=0o644)
        logger.info("Saved %d recipients (%d active)", len(self.entries), len(self.active()))
