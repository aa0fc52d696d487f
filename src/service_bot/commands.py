"""
Slash command handlers, independent of the Discord client.

Each handler takes plain values extracted from an interaction, consults
the authorization gate, calls the service invoker when approved, and
returns a CommandReply: the text to send and whether only the caller
should see it.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from .executor import ServiceInvoker
from .formatters import (
    MAX_AUTOCOMPLETE_CHOICES,
    format_journal,
    format_status_listing,
    truncate_for_discord,
)
from .gate import AuthorizationGate, ServiceRequest

logger = logging.getLogger("service_bot.commands")


@dataclass
class CommandReply:
    """Text reply plus its visibility."""

    text: str
    ephemeral: bool = False


class CommandHandlers:
    """
    Handlers for /service, /status, /logs, /add_service and autocomplete.

    A failure while handling one request is turned into reply text; it
    never propagates to the router or affects other requests.
    """

    def __init__(
        self,
        gate: AuthorizationGate,
        invoker: ServiceInvoker,
        default_log_lines: int = 50,
        max_log_lines: int = 200,
    ):
        self.gate = gate
        self.invoker = invoker
        self.default_log_lines = default_log_lines
        self.max_log_lines = max_log_lines

    async def service(self, request: ServiceRequest) -> CommandReply:
        """/service <action> <service>"""
        decision = self.gate.check_run_service(request)
        if not decision.allowed:
            return CommandReply(decision.message, decision.ephemeral)

        logger.info(
            f"Running {request.action} {request.service} for guild {request.tenant_id} "
            f"(caller: {request.caller_id})"
        )
        try:
            result = await self.invoker.run_action(request.action, request.service)
        except Exception as e:
            logger.error(f"Service action {request.action} {request.service} failed: {e}", exc_info=True)
            return CommandReply(f"error occurred: `{e}`")

        return CommandReply(truncate_for_discord(result.text))

    async def status(self, tenant_id: int) -> CommandReply:
        """/status - up/down for each of the guild's services."""
        services = self.gate.tenant_services(tenant_id)
        try:
            statuses = await self.invoker.statuses(services)
        except Exception as e:
            logger.error(f"Status check for guild {tenant_id} failed: {e}", exc_info=True)
            return CommandReply(f"error occurred: `{e}`", ephemeral=True)

        return CommandReply(format_status_listing(statuses), ephemeral=True)

    async def logs(
        self, tenant_id: int, service: str, lines: Optional[int] = None
    ) -> CommandReply:
        """/logs <service> [lines]"""
        decision = self.gate.check_logs(tenant_id, service)
        if not decision.allowed:
            return CommandReply(decision.message, decision.ephemeral)

        lines = self.default_log_lines if lines is None else lines
        lines = max(1, min(lines, self.max_log_lines))

        try:
            result = await self.invoker.journal(service, lines)
        except Exception as e:
            logger.error(f"Journal read for {service} failed: {e}", exc_info=True)
            return CommandReply(f"error occurred: `{e}`", ephemeral=True)

        if not result.success:
            return CommandReply(truncate_for_discord(result.text), ephemeral=True)
        return CommandReply(format_journal(service, result.text), ephemeral=True)

    async def add_service(
        self, request: ServiceRequest, owner_id: Optional[int]
    ) -> CommandReply:
        """
        /add_service <service> (application owner only)

        The gate blocks on its add lock and on file I/O, so it runs in a
        worker thread to keep the event loop responsive.
        """
        decision = await asyncio.to_thread(self.gate.add_service, request, owner_id)
        return CommandReply(decision.message, ephemeral=True)

    def autocomplete(self, tenant_id: int, current: str = "") -> List[str]:
        """Service name suggestions: the guild's list filtered by what was typed."""
        needle = current.lower()
        return [
            service
            for service in self.gate.tenant_services(tenant_id)
            if needle in service.lower()
        ][:MAX_AUTOCOMPLETE_CHOICES]
