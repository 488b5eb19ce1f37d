# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Ad Platform Auth Service - Main entry point.

This module handles:
- CLI argument parsing
- Credential tool modes (--list-credentials, --refresh-now)
- Logging configuration
- Application startup

The actual FastAPI application is created via app_factory.create_app().
"""

import argparse
import logging
import os
import sys
import time
from pathlib import Path

# --- Argument Parsing (BEFORE heavy imports) ---
parser = argparse.ArgumentParser(description="Ad Platform Auth Service")
parser.add_argument(
    "--host", type=str, default="0.0.0.0", help="Host to bind the server to."
)
parser.add_argument("--port", type=int, default=8000, help="Port to run the server on.")
parser.add_argument(
    "--list-credentials",
    metavar="TEAM_ID",
    help="Print the active credentials of a team and exit.",
)
parser.add_argument(
    "--refresh-now",
    action="store_true",
    help="Run one token refresh cycle and exit.",
)
parser.add_argument(
    "--team",
    metavar="TEAM_ID",
    default=None,
    help="Restrict --refresh-now to one team (default: all teams).",
)
args, _ = parser.parse_known_args()

# Add the 'src' directory to the Python path
sys.path.append(str(Path(__file__).resolve().parent.parent))

_start_time = time.time()

# Load environment variables
from dotenv import load_dotenv

_root_dir = Path.cwd()
load_dotenv(_root_dir / ".env")

# --- Logging Configuration ---
LOG_DIR = Path(os.getenv("AUTH_SERVICE_LOG_DIR", str(_root_dir / "logs")))
LOG_DIR.mkdir(parents=True, exist_ok=True)

import colorlog

console_handler = colorlog.StreamHandler(sys.stdout)
console_handler.setLevel(logging.INFO)
console_handler.setFormatter(
    colorlog.ColoredFormatter(
        "%(log_color)s%(message)s",
        log_colors={
            "DEBUG": "cyan",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "red,bg_white",
        },
    )
)

info_file_handler = logging.FileHandler(LOG_DIR / "auth_service.log", encoding="utf-8")
info_file_handler.setLevel(logging.INFO)
info_file_handler.setFormatter(
    logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
)

debug_file_handler = logging.FileHandler(LOG_DIR / "auth_service_debug.log", encoding="utf-8")
debug_file_handler.setLevel(logging.DEBUG)
debug_file_handler.setFormatter(
    logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
)


class PlatformAuthDebugFilter(logging.Filter):
    def filter(self, record):
        return record.levelno == logging.DEBUG and record.name.startswith("platform_auth")


debug_file_handler.addFilter(PlatformAuthDebugFilter())

root_logger = logging.getLogger()
root_logger.setLevel(logging.DEBUG)
root_logger.addHandler(info_file_handler)
root_logger.addHandler(console_handler)
root_logger.addHandler(debug_file_handler)

# Silence noisy loggers
logging.getLogger("uvicorn").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

# Credential tool modes run against the configured store and exit
if args.list_credentials or args.refresh_now:
    from platform_auth.client_credentials import ClientCredentialsResolver
    from platform_auth.credential_store import create_credential_store
    from platform_auth.credential_tool import run_credential_tool
    from platform_auth.oauth_state import StateCodec
    from platform_auth.settings import AuthSettings
    from platform_auth.token_exchange import TokenExchanger
    from platform_auth.token_refresh_service import TokenRefreshOrchestrator

    _settings = AuthSettings.from_env()
    _store = create_credential_store(_settings.credential_store_path)
    _orchestrator = TokenRefreshOrchestrator(
        _store,
        TokenExchanger(StateCodec(_settings.state_secret), timeout=_settings.http_timeout),
        ClientCredentialsResolver.from_settings(_settings, _store),
    )
    run_credential_tool(
        _store,
        _orchestrator,
        list_team=args.list_credentials,
        refresh=args.refresh_now,
        refresh_team=args.team,
    )
    sys.exit(0)

from rich.console import Console

from platform_auth.error_handler import mask_credential

_console = Console()

service_api_key = os.getenv("AUTH_SERVICE_API_KEY")
if service_api_key:
    key_display = f"✓ {mask_credential(service_api_key, style='full')}"
else:
    key_display = "✗ Not Set (INSECURE - anyone can access!)"

print("━" * 70)
print(f"Starting auth service on {args.host}:{args.port}")
print(f"Service API Key: {key_display}")
print("━" * 70)

with _console.status("[dim]Initializing auth service...", spinner="dots"):
    from auth_service.app_factory import create_app

    app = create_app()

_elapsed = time.time() - _start_time
print(f"✓ Server ready in {_elapsed:.2f}s")

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=args.host, port=args.port)
