"""Site config files in sites-available/sites-enabled.

Writes go through a temporary file in the target directory and an atomic
rename. A write is followed by a full config test; when the test fails the
previous state of both files is restored, so a broken config never stays
on disk and the proxy is never reloaded with it.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

import structlog

from hostgate.proxy.controller import ProxyController
from hostgate.proxy.nginx import config_filename

logger = structlog.get_logger()


@dataclass
class WriteResult:
    success: bool
    message: str
    config_path: str
    stderr: str = ""
    error: str | None = None


@dataclass
class ReloadResult:
    """Outcome of test-then-reload; stage names the step that failed."""

    success: bool
    message: str
    stage: str | None = None
    stdout: str = ""
    stderr: str = ""


@dataclass
class RemoveResult:
    success: bool
    message: str
    removed: bool
    stderr: str = ""


class ProxySiteManager:
    """Writes, enables and removes per-domain site configs."""

    def __init__(
        self,
        controller: ProxyController,
        sites_available: str | Path = "/etc/nginx/sites-available",
        sites_enabled: str | Path = "/etc/nginx/sites-enabled",
    ) -> None:
        self.controller = controller
        self.sites_available = Path(sites_available)
        self.sites_enabled = Path(sites_enabled)

    def config_path(self, domain: str) -> Path:
        return self.sites_available / config_filename(domain)

    def enabled_path(self, domain: str) -> Path:
        return self.sites_enabled / config_filename(domain)

    async def exists(self, domain: str) -> bool:
        return await asyncio.to_thread(self.config_path(domain).exists)

    async def read(self, domain: str) -> str | None:
        path = self.config_path(domain)
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return None

    def _install(self, domain: str, content: str) -> tuple[str | None, bool]:
        """Put content in place and enable it; return the prior state for rollback."""
        target = self.config_path(domain)
        link = self.enabled_path(domain)
        previous = target.read_text(encoding="utf-8") if target.exists() else None
        link_existed = link.is_symlink() or link.exists()

        self.sites_available.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{domain}-", suffix=".conf.tmp", dir=self.sites_available
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            os.replace(tmp_name, target)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_name)
            raise
        os.chmod(target, 0o644)

        if not link_existed:
            self.sites_enabled.mkdir(parents=True, exist_ok=True)
            link.symlink_to(target)
        return previous, link_existed

    def _restore(self, domain: str, previous: str | None, link_existed: bool) -> None:
        target = self.config_path(domain)
        link = self.enabled_path(domain)
        if previous is None:
            with contextlib.suppress(FileNotFoundError):
                target.unlink()
        else:
            target.write_text(previous, encoding="utf-8")
        if not link_existed:
            with contextlib.suppress(FileNotFoundError):
                link.unlink()

    async def write(self, domain: str, content: str) -> WriteResult:
        """Install and enable a config, then test; roll back if the test fails."""
        path = str(self.config_path(domain))
        try:
            previous, link_existed = await asyncio.to_thread(self._install, domain, content)
        except OSError as e:
            logger.error("Failed to write proxy config", domain=domain, error=str(e))
            return WriteResult(
                success=False,
                message=f"Failed to write Nginx configuration: {e}",
                config_path=path,
                error=str(e),
            )

        test = await self.controller.test()
        if not test.ok:
            await asyncio.to_thread(self._restore, domain, previous, link_existed)
            logger.error(
                "Proxy config test failed, rolled back",
                domain=domain,
                stderr=test.stderr,
            )
            return WriteResult(
                success=False,
                message="Nginx configuration test failed",
                config_path=path,
                stderr=test.stderr,
                error=test.describe_failure(),
            )

        logger.info("Proxy config written", domain=domain, path=path)
        return WriteResult(
            success=True,
            message=f"Nginx configuration written for {domain}",
            config_path=path,
        )

    async def reload(self) -> ReloadResult:
        """Test the full configuration again, then reload the proxy."""
        test = await self.controller.test()
        if not test.ok:
            return ReloadResult(
                success=False,
                message=f"Nginx configuration test failed: {test.describe_failure()}",
                stage="test",
                stdout=test.stdout,
                stderr=test.stderr,
            )

        reload = await self.controller.reload()
        if not reload.ok:
            return ReloadResult(
                success=False,
                message=f"Failed to reload Nginx: {reload.describe_failure()}",
                stage="reload",
                stdout=reload.stdout,
                stderr=reload.stderr,
            )

        logger.info("Proxy reloaded")
        return ReloadResult(success=True, message="Nginx reloaded successfully", stdout=reload.stdout)

    def _unlink_both(self, domain: str) -> bool:
        removed = False
        for path in (self.enabled_path(domain), self.config_path(domain)):
            try:
                path.unlink()
                removed = True
            except FileNotFoundError:
                logger.debug("Already absent", path=str(path))
        return removed

    async def remove(self, domain: str) -> RemoveResult:
        """Delete symlink and config (either may be absent), then re-test."""
        removed = await asyncio.to_thread(self._unlink_both, domain)
        test = await self.controller.test()
        if not test.ok:
            return RemoveResult(
                success=False,
                message=f"Config removed but Nginx test failed: {test.describe_failure()}",
                removed=removed,
                stderr=test.stderr,
            )
        return RemoveResult(
            success=True,
            message=f"Nginx configuration removed for {domain}",
            removed=removed,
        )
