"""
Pytest fixtures for service bot tests.
"""

import pytest
from unittest.mock import MagicMock, AsyncMock

from src.service_bot.commands import CommandHandlers
from src.service_bot.executor import InvocationResult, ServiceInvoker
from src.service_bot.gate import AuthorizationGate
from src.service_bot.persistence import ServersFile
from src.service_bot.store import TenantAuthorizationStore

GUILD_ID = 42
OTHER_GUILD_ID = 1234567890123456789
OWNER_ID = 111111111111111111
MEMBER_ID = 222222222222222222


@pytest.fixture
def servers_path(tmp_path):
    """Canonical servers file path inside a per-test directory."""
    return tmp_path / "servers.yaml"


@pytest.fixture
def servers_file(servers_path):
    return ServersFile(servers_path)


@pytest.fixture
def store():
    """Guild 42 allows nginx and redis."""
    return TenantAuthorizationStore({GUILD_ID: ["nginx", "redis"]})


@pytest.fixture
def gate(store, servers_file):
    return AuthorizationGate(store, servers_file, save_retries=2, retry_delay=0)


@pytest.fixture
def mock_invoker():
    """Invoker double whose coroutines can be inspected."""
    invoker = MagicMock(spec=ServiceInvoker)
    invoker.dry_run = False
    invoker.run_action = AsyncMock(
        side_effect=lambda action, service: InvocationResult(
            True, f"Successfully ran `/service {action} {service}`"
        )
    )
    invoker.statuses = AsyncMock(
        side_effect=lambda services: [(service, service == "nginx") for service in services]
    )
    invoker.journal = AsyncMock(return_value=InvocationResult(True, "line one\nline two"))
    return invoker


@pytest.fixture
def handlers(gate, mock_invoker):
    return CommandHandlers(gate, mock_invoker, default_log_lines=50, max_log_lines=200)
