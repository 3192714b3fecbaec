"""Control of the running reverse proxy process."""

from __future__ import annotations

from abc import ABC, abstractmethod

from hostgate.core.config import ProxyConfig
from hostgate.core.process import CommandResult, run_command


class ProxyController(ABC):
    """Config test and reload for the proxy process."""

    @abstractmethod
    async def test(self) -> CommandResult:
        """Validate the complete proxy configuration."""

    @abstractmethod
    async def reload(self) -> CommandResult:
        """Signal the running proxy to load its configuration."""


class NginxController(ProxyController):
    """nginx -t and a service-manager reload."""

    def __init__(self, config: ProxyConfig | None = None) -> None:
        self.config = config or ProxyConfig()

    def _argv(self, argv: list[str]) -> list[str]:
        return ["sudo", *argv] if self.config.use_sudo else list(argv)

    async def test(self) -> CommandResult:
        return await run_command(
            self._argv([self.config.nginx_binary, "-t"]),
            timeout=self.config.command_timeout,
            tool="nginx",
        )

    async def reload(self) -> CommandResult:
        return await run_command(
            self._argv(self.config.reload_command),
            timeout=self.config.command_timeout,
            tool="nginx",
        )
