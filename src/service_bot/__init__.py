"""
Service Control Bot - Discord slash commands for host services.

Lets authorized guild members start, stop and restart systemd services,
list their status and read their journal through Discord slash commands.

Each guild has its own allow-list of services. The allow-list lives in a
single in-memory store shared by all command handlers and is persisted to
a YAML file with an atomic replace-on-write. Only the application owner
can extend a guild's allow-list.
"""

__version__ = "0.1.0"
