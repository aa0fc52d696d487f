"""
Tests for bot wiring, token validation, logging setup, slash command
error handling and the reconnect loop.
"""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import discord
import pytest
from discord import app_commands

from src.service_bot import main
from src.service_bot.config import BotConfig
from src.service_bot.main import (
    COMMAND_FAILED_MESSAGE,
    MAX_RECONNECT_ATTEMPTS,
    create_bot,
    run_bot_with_reconnect,
    setup_logging,
    validate_discord_token,
)
from src.service_bot.persistence import ServersFile
from src.service_bot.store import TenantAuthorizationStore


class TestValidateDiscordToken:
    def test_empty(self):
        assert validate_discord_token("") == (False, "Discord token is empty")

    def test_wrong_number_of_parts(self):
        is_valid, message = validate_discord_token("abc.def")
        assert is_valid is False
        assert "3 parts" in message

    def test_bad_base64(self):
        is_valid, message = validate_discord_token("a!b@c.def.ghi")
        assert is_valid is False
        assert "base64" in message

    def test_valid_format(self):
        assert validate_discord_token("MTIzNDU2Nzg5.abcdef.ghijklmnop") == (True, "Token format valid")


class TestCreateBot:
    """The bot is wired around one injected store."""

    @pytest.fixture
    def servers_file(self, tmp_path):
        return ServersFile(tmp_path / "dev.servers.yaml")

    def test_components_share_store(self, tmp_path, servers_file):
        store = TenantAuthorizationStore({42: ["nginx"]})
        config = BotConfig(
            discord_token="x.y.z", environment="development", servers_file=servers_file.path
        )

        bot = create_bot(config, store, servers_file)

        assert bot.store is store
        assert bot.handlers.gate.store is store
        assert bot.handlers.gate.servers_file is servers_file
        assert bot.handlers.autocomplete(42) == ["nginx"]

    def test_development_is_dry_run(self, servers_file):
        config = BotConfig(discord_token="x.y.z", environment="development")
        bot = create_bot(config, TenantAuthorizationStore(), servers_file)
        assert bot.handlers.invoker.dry_run is True

    def test_production_runs_systemctl(self, servers_file):
        config = BotConfig(discord_token="x.y.z", environment="production", command_timeout=15)
        bot = create_bot(config, TenantAuthorizationStore(), servers_file)
        assert bot.handlers.invoker.dry_run is False
        assert bot.handlers.invoker.timeout == 15


class TestSetupLogging:
    def test_creates_log_file(self, tmp_path):
        log_dir = tmp_path / "logs"
        logger = setup_logging(log_dir)
        try:
            logging.getLogger("service_bot.gate").info("hello from the gate")
            for handler in logger.handlers:
                handler.flush()

            log_files = list(log_dir.glob("service_bot_*.log"))
            assert len(log_files) == 1
            assert "hello from the gate" in log_files[0].read_text(encoding="utf-8")
        finally:
            for handler in list(logger.handlers):
                handler.close()
                logger.removeHandler(handler)
            discord_logger = logging.getLogger("discord")
            for handler in list(discord_logger.handlers):
                handler.close()
                discord_logger.removeHandler(handler)


class TestAppCommandError:
    def test_caller_gets_generic_ephemeral_notice(self, tmp_path):
        config = BotConfig(discord_token="x.y.z", environment="development")
        bot = create_bot(config, TenantAuthorizationStore(), ServersFile(tmp_path / "servers.yaml"))
        interaction = MagicMock()
        interaction.command.name = "logs"
        interaction.guild_id = 42
        interaction.response.is_done.return_value = False
        interaction.response.send_message = AsyncMock()

        asyncio.run(
            bot.on_app_command_error(interaction, app_commands.AppCommandError("secret path /etc"))
        )

        interaction.response.send_message.assert_awaited_once_with(
            COMMAND_FAILED_MESSAGE, ephemeral=True
        )


class TestRunBotWithReconnect:
    """The loop only retries connection failures, with growing delays."""

    @pytest.fixture
    def config(self, tmp_path):
        return BotConfig(
            discord_token="x.y.z",
            environment="development",
            servers_file=tmp_path / "servers.yaml",
        )

    @pytest.fixture
    def bot(self, monkeypatch):
        bot = MagicMock()
        bot.start = AsyncMock()
        monkeypatch.setattr(main, "create_bot", MagicMock(return_value=bot))
        return bot

    @pytest.fixture
    def sleep(self, monkeypatch):
        sleep = AsyncMock()
        monkeypatch.setattr(main.asyncio, "sleep", sleep)
        return sleep

    def test_clean_stop_returns(self, config, bot, sleep):
        asyncio.run(run_bot_with_reconnect(config))
        bot.start.assert_awaited_once_with("x.y.z")
        sleep.assert_not_awaited()

    def test_retries_connection_errors_with_backoff(self, config, bot, sleep):
        bot.start.side_effect = [
            aiohttp.ClientConnectionError("down"),
            aiohttp.ClientConnectionError("still down"),
            None,
        ]

        asyncio.run(run_bot_with_reconnect(config))

        assert bot.start.await_count == 3
        assert [call.args[0] for call in sleep.await_args_list] == [5, 10]

    def test_gives_up_after_max_attempts(self, config, bot, sleep):
        bot.start.side_effect = aiohttp.ClientConnectionError("down")

        with pytest.raises(SystemExit):
            asyncio.run(run_bot_with_reconnect(config))

        assert bot.start.await_count == MAX_RECONNECT_ATTEMPTS
        assert sleep.await_count == MAX_RECONNECT_ATTEMPTS - 1

    def test_bad_token_is_not_retried(self, config, bot, sleep):
        bot.start.side_effect = discord.LoginFailure("Improper token has been passed.")

        with pytest.raises(SystemExit):
            asyncio.run(run_bot_with_reconnect(config))

        assert bot.start.await_count == 1
        sleep.assert_not_awaited()

    def test_store_loaded_once_for_every_attempt(self, config, bot, sleep):
        bot.start.side_effect = [aiohttp.ClientConnectionError("down"), None]

        asyncio.run(run_bot_with_reconnect(config))

        stores = {id(call.args[1]) for call in main.create_bot.call_args_list}
        assert len(stores) == 1
