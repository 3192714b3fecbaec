"""Reverse proxy config synthesis and control."""

from hostgate.proxy.controller import NginxController, ProxyController
from hostgate.proxy.nginx import generate_config, upstream_name
from hostgate.proxy.sites import ProxySiteManager, ReloadResult, RemoveResult, WriteResult

__all__ = [
    "NginxController",
    "ProxyController",
    "ProxySiteManager",
    "ReloadResult",
    "RemoveResult",
    "WriteResult",
    "generate_config",
    "upstream_name",
]
