"""nginx virtual-host generation for custom domains.

generate_config() is pure: the same inputs produce the same text apart from
the "Generated:" comment line. Two shapes exist:

- HTTP only (no certificate yet): port 80 proxies straight to the upstream.
- HTTP + HTTPS: port 80 only serves the ACME challenge and redirects, port 443
  terminates TLS and proxies with forwarded headers, gzip and cache rules.
"""

from __future__ import annotations

from datetime import UTC, datetime

from hostgate.certs.manager import CertPaths

SSL_CIPHERS = (
    "ECDHE-ECDSA-AES128-GCM-SHA256:ECDHE-RSA-AES128-GCM-SHA256:"
    "ECDHE-ECDSA-AES256-GCM-SHA384:ECDHE-RSA-AES256-GCM-SHA384"
)
GZIP_TYPES = (
    "text/plain text/css text/xml text/javascript application/x-javascript "
    "application/xml+rss application/json application/javascript image/svg+xml"
)
INDENT = "    "


def upstream_name(slug: str) -> str:
    """Deterministic upstream identifier for a tenant."""
    return f"{slug.replace('-', '_')}_custom"


def config_filename(domain: str) -> str:
    return f"{domain}.conf"


def _block(header: str, body: list[str], depth: int = 0) -> list[str]:
    pad = INDENT * depth
    inner = INDENT * (depth + 1)
    lines = [f"{pad}{header} {{"]
    lines.extend(f"{inner}{line}" if line else "" for line in body)
    lines.append(f"{pad}}}")
    return lines


def _proxy_headers(upstream: str) -> list[str]:
    return [
        f"proxy_pass http://{upstream};",
        "proxy_http_version 1.1;",
        "proxy_set_header Upgrade $http_upgrade;",
        "proxy_set_header Connection 'upgrade';",
        "proxy_set_header Host $host;",
        "proxy_set_header X-Real-IP $remote_addr;",
        "proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;",
        "proxy_set_header X-Forwarded-Proto $scheme;",
        "proxy_set_header X-Forwarded-Host $host;",
        "proxy_set_header X-Forwarded-Port $server_port;",
        "proxy_connect_timeout 60s;",
        "proxy_send_timeout 60s;",
        "proxy_read_timeout 60s;",
    ]


def _http_server(domain: str, upstream: str, acme_webroot: str, tls: bool) -> list[str]:
    body = [
        "listen 80;",
        "listen [::]:80;",
        f"server_name {domain};",
        "",
        "# Let's Encrypt ACME challenge",
        *_block("location ^~ /.well-known/acme-challenge/", [f"root {acme_webroot};"]),
        "",
    ]
    if tls:
        body.append("# Redirect all HTTP to HTTPS")
        body.extend(_block("location /", ["return 301 https://$server_name$request_uri;"]))
    else:
        body.append("# Proxy to application (no SSL yet)")
        body.extend(
            _block("location /", [*_proxy_headers(upstream), "proxy_cache_bypass $http_upgrade;"])
        )
    return ["# HTTP server", *_block("server", body)]


def _https_server(domain: str, upstream: str, cert_paths: CertPaths, log_dir: str) -> list[str]:
    body = [
        "listen 443 ssl http2;",
        "listen [::]:443 ssl http2;",
        f"server_name {domain};",
        "",
        "# SSL certificates (Let's Encrypt)",
        f"ssl_certificate {cert_paths.fullchain};",
        f"ssl_certificate_key {cert_paths.privkey};",
        f"ssl_trusted_certificate {cert_paths.chain};",
        "",
        "# SSL configuration (Mozilla Intermediate)",
        "ssl_protocols TLSv1.2 TLSv1.3;",
        f"ssl_ciphers {SSL_CIPHERS};",
        "ssl_prefer_server_ciphers off;",
        "ssl_session_cache shared:SSL:10m;",
        "ssl_session_timeout 10m;",
        "ssl_stapling on;",
        "ssl_stapling_verify on;",
        "",
        "# Security headers",
        'add_header Strict-Transport-Security "max-age=31536000; includeSubDomains" always;',
        "add_header X-Content-Type-Options nosniff always;",
        "add_header X-Frame-Options DENY always;",
        'add_header X-XSS-Protection "1; mode=block" always;',
        "",
        "client_max_body_size 10M;",
        "",
        f"access_log {log_dir}/{domain}.access.log;",
        f"error_log {log_dir}/{domain}.error.log warn;",
        "",
        "gzip on;",
        "gzip_vary on;",
        "gzip_min_length 1024;",
        f"gzip_types {GZIP_TYPES};",
        "",
        *_block(
            "location /",
            [
                *_proxy_headers(upstream),
                "proxy_buffering on;",
                "proxy_buffer_size 4k;",
                "proxy_buffers 8 4k;",
                "proxy_busy_buffers_size 8k;",
                "proxy_cache_bypass $http_upgrade;",
            ],
        ),
        "",
        "# Static assets",
        *_block(
            "location /_next/static",
            [
                f"proxy_pass http://{upstream};",
                "proxy_cache_valid 200 365d;",
                'add_header Cache-Control "public, max-age=31536000, immutable";',
            ],
        ),
        "",
        *_block(
            "location /public",
            [
                f"proxy_pass http://{upstream};",
                "proxy_cache_valid 200 7d;",
                'add_header Cache-Control "public, max-age=604800";',
            ],
        ),
        "",
        "# Health check",
        *_block("location /api/health", [f"proxy_pass http://{upstream};", "access_log off;"]),
    ]
    return ["# HTTPS server", *_block("server", body)]


def generate_config(
    domain: str,
    slug: str,
    upstream_port: int,
    cert_paths: CertPaths | None = None,
    *,
    generated_at: datetime | None = None,
    acme_webroot: str = "/var/www/certbot",
    log_dir: str = "/var/log/nginx",
) -> str:
    """Render the virtual-host config for a tenant's custom domain.

    Args:
        domain: The custom domain (server_name).
        slug: Tenant slug; names the upstream.
        upstream_port: Local port of the tenant application.
        cert_paths: Certificate locations; None renders the HTTP-only shape.
        generated_at: Timestamp for the header comment (defaults to now).
        acme_webroot: Root served for the ACME challenge path.
        log_dir: Directory for per-domain access/error logs.

    Returns:
        The config text, newline-terminated.
    """
    upstream = upstream_name(slug)
    stamp = (generated_at or datetime.now(UTC)).isoformat()
    tls = cert_paths is not None

    lines = [
        f"# Nginx configuration for {slug} - Custom Domain",
        f"# Domain: {domain}",
        f"# Tenant: {slug}",
        f"# Generated: {stamp}",
        "",
        *_block(f"upstream {upstream}", [f"server 127.0.0.1:{upstream_port};", "keepalive 64;"]),
        "",
        *_http_server(domain, upstream, acme_webroot, tls),
    ]
    if cert_paths is not None:
        lines.append("")
        lines.extend(_https_server(domain, upstream, cert_paths, log_dir))
    return "\n".join(lines) + "\n"
