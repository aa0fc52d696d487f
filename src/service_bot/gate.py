"""
Command authorization gate.

Decides whether a slash-command request may proceed, and sequences the one
privileged mutation (add-service): owner check, then persistence, then the
store mutation. All outcomes are returned as GateResult values; nothing in
here raises into the command handlers.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from .persistence import PersistenceWriteError, ServersFile
from .security import validate_service_name
from .store import TenantAuthorizationStore

logger = logging.getLogger("service_bot.gate")


class ServiceAction(str, Enum):
    """Actions a guild member may run against an allowed service."""
    START = "start"
    STOP = "stop"
    RESTART = "restart"


SERVICE_ACTIONS = tuple(action.value for action in ServiceAction)


class Denial(str, Enum):
    """Why a request was not approved."""
    NOT_AUTHORIZED = "not_authorized"
    INVALID_ARGUMENTS = "invalid_arguments"
    ALREADY_ALLOWED = "already_allowed"
    PERSISTENCE_WRITE_FAILURE = "persistence_write_failure"


# Shared by "unknown action" and "service not allowed" so neither leaks
# which services a guild has configured.
INVALID_SERVICE_OR_ACTION = "Invalid service or action"
INVALID_SERVICE = "Invalid service"
INVALID_ARGS = "Invalid args"
NOT_OWNER = "Only the application owner can add services"


@dataclass
class ServiceRequest:
    """Inbound request as extracted by the interaction router."""

    tenant_id: int
    service: str
    action: Optional[str] = None
    caller_id: Optional[int] = None


@dataclass
class GateResult:
    """Outcome of a gate decision."""

    allowed: bool
    message: str = ""
    ephemeral: bool = False
    reason: Optional[Denial] = None

    @classmethod
    def approve(cls, message: str = "", ephemeral: bool = False) -> "GateResult":
        return cls(allowed=True, message=message, ephemeral=ephemeral)

    @classmethod
    def deny(cls, reason: Denial, message: str, ephemeral: bool = False) -> "GateResult":
        return cls(allowed=False, message=message, ephemeral=ephemeral, reason=reason)


class AuthorizationGate:
    """
    Authorization decisions over a shared TenantAuthorizationStore.

    Read paths (run-service, logs, status, autocomplete) only take the
    store's shared lock. add_service holds a process-wide lock across the
    whole save -> add sequence so concurrent adds can never
    lose each other's updates.
    """

    def __init__(
        self,
        store: TenantAuthorizationStore,
        servers_file: ServersFile,
        save_retries: int = 2,
        retry_delay: float = 0.05,
    ):
        """
        Initialize the gate.

        Args:
            store: Shared authorization store
            servers_file: Persistence for the store
            save_retries: Extra save attempts before an add is abandoned
            retry_delay: Base delay in seconds between save attempts
        """
        self.store = store
        self.servers_file = servers_file
        self.save_retries = max(save_retries, 0)
        self.retry_delay = retry_delay
        self._add_lock = threading.Lock()
        # The store is taken to match the file it was loaded from. A store that
        # came out of a corrupt file must not be written back over it.
        self._saved_version = store.version

    def check_run_service(self, request: ServiceRequest) -> GateResult:
        """Approve iff the action is known and the service is on the guild's allow-list."""
        if request.action is None or not request.service:
            return GateResult.deny(Denial.INVALID_ARGUMENTS, INVALID_ARGS)

        if not (
            request.action in SERVICE_ACTIONS
            and self.store.is_allowed(request.tenant_id, request.service)
        ):
            logger.info(
                f"Rejected /service {request.action} {request.service} "
                f"in guild {request.tenant_id} (caller: {request.caller_id})"
            )
            return GateResult.deny(Denial.NOT_AUTHORIZED, INVALID_SERVICE_OR_ACTION)

        return GateResult.approve()

    def check_logs(self, tenant_id: int, service: str) -> GateResult:
        """Approve log retrieval iff the service is on the guild's allow-list."""
        if not self.store.is_allowed(tenant_id, service):
            logger.info(f"Rejected /logs {service} in guild {tenant_id}")
            return GateResult.deny(Denial.NOT_AUTHORIZED, INVALID_SERVICE, ephemeral=True)
        return GateResult.approve(ephemeral=True)

    def tenant_services(self, tenant_id: int) -> List[str]:
        """The guild's own allow-list, used for status listing and autocomplete."""
        return self.store.services(tenant_id)

    def add_service(self, request: ServiceRequest, owner_id: Optional[int]) -> GateResult:
        """
        Add a service to a guild's allow-list and persist it.

        Only the application owner may add. The servers file is saved with
        the new entry first and the store only picks it up once that save
        succeeded, so no reader ever sees a service that is not on disk.

        Args:
            request: Request carrying tenant_id, service and caller_id
            owner_id: Discord user id of the application owner

        Returns:
            GateResult describing the outcome (always ephemeral)
        """
        tenant_id, service = request.tenant_id, request.service

        if owner_id is None or request.caller_id != owner_id:
            logger.info(
                f"Rejected /add_service {service} in guild {tenant_id} "
                f"from non-owner {request.caller_id}"
            )
            return GateResult.deny(Denial.NOT_AUTHORIZED, NOT_OWNER, ephemeral=True)

        validation = validate_service_name(service)
        if not validation.is_allowed:
            return GateResult.deny(
                Denial.INVALID_ARGUMENTS,
                f"Invalid service name: {validation.reason}",
                ephemeral=True,
            )

        with self._add_lock:
            if self.store.is_allowed(tenant_id, service):
                return GateResult.deny(
                    Denial.ALREADY_ALLOWED,
                    f"{service} is already allowed for this server",
                    ephemeral=True,
                )

            servers_services = self.store.snapshot()
            servers_services.setdefault(tenant_id, []).append(service)
            try:
                self._save_with_retry(servers_services)
            except PersistenceWriteError as e:
                logger.error(f"Dropped add of {service!r} to guild {tenant_id}: {e}")
                return GateResult.deny(
                    Denial.PERSISTENCE_WRITE_FAILURE,
                    f"Could not save {service} to the servers file; nothing was changed. "
                    f"Please try again.",
                    ephemeral=True,
                )

            self.store.add(tenant_id, service)
            self._saved_version = self.store.version

        logger.info(f"Added {service!r} to allowed services for guild {tenant_id}")
        return GateResult.approve(
            f"added {service} to allowed services for this server", ephemeral=True
        )

    def flush(self) -> bool:
        """
        Final save at shutdown, serialized with any in-flight add.

        Skipped when the store holds nothing the servers file lacks.
        """
        with self._add_lock:
            version = self.store.version
            if version == self._saved_version:
                logger.debug("Servers file already up to date, nothing to flush")
                return True
            if not self.servers_file.flush(self.store):
                return False
            self._saved_version = version
            return True

    def _save_with_retry(self, servers_services: Dict[int, List[str]]) -> None:
        """Write the mapping, retrying with linear backoff. Re-raises the last failure."""
        attempts = self.save_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                self.servers_file.write(servers_services)
                return
            except PersistenceWriteError as e:
                if attempt == attempts:
                    raise
                logger.warning(f"Save attempt {attempt}/{attempts} failed: {e}")
                if self.retry_delay:
                    time.sleep(self.retry_delay * attempt)
