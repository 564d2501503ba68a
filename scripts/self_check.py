"""Basic environment self-check for the focus engine."""

from __future__ import annotations

import os
import socket
import sys
from importlib import metadata
from pathlib import Path

import httpx

sys.path.append(str(Path(__file__).resolve().parents[1]))
from utils.env_loader import PROJECT_ENV, load_env


FIRESTORE_HOST = "firestore.googleapis.com"

# distribution name -> minimum version
REQUIRED_LIBS = {
    "google-cloud-firestore": "2.15",
    "python-dotenv": "1.0",
    "httpx": "0.27",
}


def check_dns(host: str = FIRESTORE_HOST) -> bool:
    try:
        socket.gethostbyname(host)
        return True
    except OSError:
        return False


def check_env() -> list[str]:
    issues: list[str] = []
    env_path = Path(os.getenv("FOCUS_ENV_FILE") or PROJECT_ENV)
    if env_path.exists():
        raw = env_path.read_bytes()
        if raw.startswith(b"\xef\xbb\xbf"):
            issues.append("BOM detected in .env")
        if b"\r\n" in raw:
            issues.append("CRLF line endings in .env")
    else:
        issues.append(".env file not found")
    creds = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
    if creds and not Path(creds).exists():
        issues.append(f"credentials file missing: {creds}")
    issues.extend(check_intervals())
    return issues


def check_intervals() -> list[str]:
    """Tick and sync intervals must be positive whole seconds."""
    problems: list[str] = []
    for var in ("FOCUS_TICK_SEC", "FOCUS_SYNC_SEC"):
        raw = os.getenv(var)
        if raw is None or not raw.strip():
            continue
        if not raw.strip().isdigit() or int(raw) <= 0:
            problems.append(f"{var} must be a positive integer, got {raw!r}")
    tick, sync = os.getenv("FOCUS_TICK_SEC", "1"), os.getenv("FOCUS_SYNC_SEC", "60")
    if tick.strip().isdigit() and sync.strip().isdigit() and int(sync) < int(tick):
        problems.append("FOCUS_SYNC_SEC is shorter than FOCUS_TICK_SEC")
    return problems


def _version_tuple(version: str) -> tuple[int, ...]:
    parts = []
    for piece in version.split(".")[:2]:
        digits = "".join(ch for ch in piece if ch.isdigit())
        parts.append(int(digits or 0))
    return tuple(parts)


def check_lib_versions() -> list[str]:
    problems: list[str] = []
    for dist, min_version in REQUIRED_LIBS.items():
        try:
            ver = metadata.version(dist)
        except metadata.PackageNotFoundError:
            problems.append(f"{dist} not installed")
            continue
        if _version_tuple(ver) < _version_tuple(min_version):
            problems.append(f"{dist} version {ver} < {min_version}")
    return problems


def check_network() -> list[str]:
    if os.getenv("MOCK_MODE") == "1":
        return []
    problems: list[str] = []
    try:
        with httpx.Client(timeout=5.0) as client:
            resp = client.get(f"https://{FIRESTORE_HOST}/")
        # Any HTTP answer means the endpoint is reachable
        if resp.status_code >= 500:
            problems.append(f"Firestore endpoint returned {resp.status_code}")
    except httpx.HTTPError as e:
        problems.append(f"Firestore endpoint unreachable: {e}")
    return problems


def main() -> int:
    load_env()
    issues = []

    issues.extend(check_env())
    issues.extend(check_lib_versions())
    if os.getenv("MOCK_MODE") != "1" and not check_dns():
        issues.append("DNS resolution failed")
    issues.extend(check_network())

    if issues:
        print("Self-check found issues:")
        for item in issues:
            print(" -", item)
        return 1
    print("Self-check passed")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
