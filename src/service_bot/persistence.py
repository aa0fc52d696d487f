"""
Durable persistence for the tenant authorization store.

The store is written to a YAML file of the form:

    servers_services:
      42:
      - nginx
      - redis

Writes are atomic: the snapshot goes to a temp file in the same directory,
is fsynced, and then os.replace()d over the canonical path. A reader of the
canonical path never sees a partial file and a crash mid-write leaves the
previous snapshot intact.

Loading is deliberately forgiving: a missing, unreadable or malformed file
yields an empty store so a broken servers file never keeps the bot down.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, List, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .store import TenantAuthorizationStore

logger = logging.getLogger("service_bot.persistence")

MAX_GUILD_ID = 2**64 - 1


class ServiceBotError(Exception):
    """Base class for service bot errors."""


class PersistenceWriteError(ServiceBotError):
    """The servers file could not be durably written."""


class ServersFileModel(BaseModel):
    """Schema of the persisted servers file."""
    # Hand-edited files often carry unquoted numeric names such as "- 8080"
    model_config = ConfigDict(coerce_numbers_to_str=True)

    servers_services: Dict[int, List[str]] = Field(
        default_factory=dict, description="Guild id -> allowed service names"
    )

    @field_validator("servers_services", mode="before")
    @classmethod
    def empty_section_is_empty_mapping(cls, value):
        """A bare 'servers_services:' key loads as None."""
        return {} if value is None else value

    @field_validator("servers_services")
    @classmethod
    def validate_guild_ids(cls, value: Dict[int, List[str]]) -> Dict[int, List[str]]:
        """Guild ids are unsigned 64-bit integers."""
        for guild_id in value:
            if not 0 <= guild_id <= MAX_GUILD_ID:
                raise ValueError(f"Guild id out of range: {guild_id}")
        return value


class ServersFile:
    """
    Load and save the authorization store at a fixed path.

    Args:
        path: Canonical servers file path (dev.servers.yaml or servers.yaml)
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> TenantAuthorizationStore:
        """
        Build a store from the servers file.

        Returns:
            Populated store, or an empty store when the file is missing,
            unreadable or does not match the schema
        """
        if not self.path.exists():
            logger.info(f"Servers file {self.path} not found, starting with an empty store")
            return TenantAuthorizationStore()

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            model = ServersFileModel.model_validate(data)
        except (OSError, UnicodeDecodeError, yaml.YAMLError, ValidationError) as e:
            logger.warning(
                f"Servers file {self.path} could not be loaded ({type(e).__name__}: {e}), "
                f"starting with an empty store"
            )
            return TenantAuthorizationStore()

        store = TenantAuthorizationStore(model.servers_services)
        logger.info(f"Loaded {len(store)} guild(s) from {self.path}")
        return store

    def save(self, store: TenantAuthorizationStore) -> None:
        """Atomically replace the servers file with a snapshot of store."""
        self.write(store.snapshot())

    def write(self, servers_services: Dict[int, List[str]]) -> None:
        """
        Atomically replace the servers file with the given mapping.

        Args:
            servers_services: Guild id -> allowed service names

        Raises:
            PersistenceWriteError: If the temp file cannot be written or renamed
        """
        payload = yaml.safe_dump(
            {"servers_services": servers_services},
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )

        tmp_path = None
        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            tmp_path = Path(tmp_name)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"Failed to save servers file {self.path}: {e}")
            if tmp_path is not None and tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    pass
            raise PersistenceWriteError(f"Could not save {self.path}: {e}") from e

        logger.debug(f"Saved servers file {self.path}")

    def flush(self, store: TenantAuthorizationStore) -> bool:
        """Save at shutdown. Logs instead of raising; returns True on success."""
        try:
            self.save(store)
        except PersistenceWriteError as e:
            logger.error(f"Final flush of servers file failed: {e}")
            return False
        return True
