"""Hostgate - custom domain onboarding and TLS provisioning for tenants."""

__version__ = "0.1.0"
