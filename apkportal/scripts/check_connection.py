"""
Supabase connection check.

Verifies credentials, DNS, HTTP reachability, table access and the CORS
preflight the browser front-end depends on. Run with:

    python -m apkportal.scripts.check_connection

Exits 0 when every check passes, 1 otherwise.
"""

import socket
import sys
from dataclasses import dataclass
from typing import Callable, List, Optional
from urllib.parse import urlparse

import httpx
from supabase import Client, create_client

from apkportal.config import settings
import logging

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger(__name__)

REQUIRED_CORS_HEADERS = ("authorization", "content-type", "apikey")


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str = ""


def check_credentials(url: str, key: str) -> CheckResult:
    missing = [name for name, value in (("SUPABASE_URL", url), ("SUPABASE_KEY", key)) if not value]
    if missing:
        return CheckResult("credentials", False, f"Missing {', '.join(missing)}")
    return CheckResult("credentials", True, "SUPABASE_URL and SUPABASE_KEY are set")


def check_dns(url: str, resolver: Callable[[str], str] = socket.gethostbyname) -> CheckResult:
    host = urlparse(url).hostname
    if not host:
        return CheckResult("dns", False, f"Cannot parse host from {url}")
    try:
        address = resolver(host)
        return CheckResult("dns", True, f"{host} resolves to {address}")
    except OSError as e:
        return CheckResult("dns", False, f"{host} does not resolve: {e}")


def check_http(url: str, key: str, http: httpx.Client) -> CheckResult:
    try:
        response = http.get(f"{url.rstrip('/')}/rest/v1/", headers={"apikey": key})
    except httpx.HTTPError as e:
        return CheckResult("http", False, f"Request failed: {e}")
    # 401/404 still prove the host answers
    if response.status_code >= 500:
        return CheckResult("http", False, f"Server error {response.status_code}")
    return CheckResult("http", True, f"HTTP {response.status_code}")


def check_table_access(supabase: Client, table: str = "app_versions") -> CheckResult:
    try:
        result = supabase.table(table).select("*").limit(1).execute()
        return CheckResult("database", True, f"Read {len(result.data or [])} row(s) from {table}")
    except Exception as e:
        return CheckResult("database", False, f"Query on {table} failed: {e}")


def check_cors(url: str, origin: str, http: httpx.Client) -> CheckResult:
    try:
        response = http.request(
            "OPTIONS",
            f"{url.rstrip('/')}/auth/v1/settings",
            headers={
                "Origin": origin,
                "Access-Control-Request-Method": "GET",
                "Access-Control-Request-Headers": ",".join(REQUIRED_CORS_HEADERS),
            },
        )
    except httpx.HTTPError as e:
        return CheckResult("cors", False, f"Preflight failed: {e}")

    allow_origin = response.headers.get("access-control-allow-origin")
    allow_headers = (response.headers.get("access-control-allow-headers") or "").lower()
    if not allow_origin:
        return CheckResult("cors", False, "Missing Access-Control-Allow-Origin header")
    if allow_origin not in ("*", origin):
        return CheckResult("cors", False, f"Origin {origin} not allowed (got {allow_origin})")
    missing = [h for h in REQUIRED_CORS_HEADERS if h not in allow_headers]
    if allow_headers != "*" and missing:
        return CheckResult("cors", False, f"Headers not allowed: {', '.join(missing)}")
    return CheckResult("cors", True, f"Origin {origin} allowed")


def run_checks(
    url: str,
    key: str,
    origin: str,
    http: Optional[httpx.Client] = None,
    supabase: Optional[Client] = None,
    resolver: Callable[[str], str] = socket.gethostbyname,
) -> List[CheckResult]:
    """Run every check in order; stops after the credentials check if it fails"""
    results = [check_credentials(url, key)]
    if not results[0].ok:
        return results

    results.append(check_dns(url, resolver))
    owns_http = http is None
    http = http or httpx.Client(timeout=10.0)
    try:
        results.append(check_http(url, key, http))
        try:
            supabase = supabase or create_client(url, key)
            results.append(check_table_access(supabase))
        except Exception as e:
            results.append(CheckResult("database", False, f"Could not create client: {e}"))
        results.append(check_cors(url, origin, http))
    finally:
        if owns_http:
            http.close()
    return results


def main() -> int:
    logger.info(f"Checking Supabase at {settings.supabase_url or '<unset>'}")
    origin = settings.get_cors_origins_list()[0] if settings.get_cors_origins_list() else settings.site_url
    results = run_checks(settings.supabase_url, settings.supabase_key, origin)
    for result in results:
        logger.info(f"[{'OK' if result.ok else 'FAIL'}] {result.name}: {result.detail}")

    if all(r.ok for r in results):
        logger.info("All checks passed")
        return 0
    logger.error("Some checks failed")
    return 1


if __name__ == "__main__":
    sys.exit(main())
