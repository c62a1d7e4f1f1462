"""
Local environment checks for the lesson-pack generator.

Run before the first batch:

    python verify_setup.py

Exits with status 1 when a required check fails.  The generation endpoint
check is advisory: a local endpoint may simply not be started yet.
"""
import asyncio
import importlib.util
import os
import sys
from typing import Awaitable, Callable, List, Tuple

GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
BLUE = "\033[94m"
RESET = "\033[0m"

# import name -> distribution name
REQUIRED_MODULES = {
    "fastapi": "fastapi",
    "uvicorn": "uvicorn",
    "httpx": "httpx",
    "pydantic": "pydantic",
    "pydantic_settings": "pydantic-settings",
    "fitz": "PyMuPDF",
    "docx": "python-docx",
    "google.auth": "google-auth",
    "requests": "requests",
}

CheckResult = Tuple[bool, str]


def _module_available(name: str) -> bool:
    try:
        return importlib.util.find_spec(name) is not None
    except ModuleNotFoundError:
        return False


async def python_version() -> CheckResult:
    major, minor, micro = sys.version_info[:3]
    return (major, minor) >= (3, 10), f"Python {major}.{minor}.{micro} (3.10+ required)"


async def installed_packages() -> CheckResult:
    missing = [dist for module, dist in REQUIRED_MODULES.items() if not _module_available(module)]
    if missing:
        return False, "missing: " + ", ".join(missing) + "  (pip install -e .)"
    return True, f"{len(REQUIRED_MODULES)} packages importable"


async def env_file() -> CheckResult:
    if os.path.isfile(".env"):
        return True, ".env found"
    return True, f"{YELLOW}no .env; relying on the process environment{RESET}"


async def input_directory() -> CheckResult:
    from lessonpack.config import settings
    from lessonpack.services.document_loader import discover_input_files

    folder = settings.NOTES_INPUT_DIR
    if not os.path.isdir(folder):
        return False, f"'{folder}' does not exist (set NOTES_INPUT_DIR)"
    return True, f"'{folder}' holds {len(discover_input_files(folder))} supported file(s)"


async def generation_endpoint() -> CheckResult:
    from lessonpack.config import settings
    from lessonpack.services.llm_client import ChatCompletionClient

    reachable = await ChatCompletionClient().check_health()
    detail = settings.LLM_BASE_URL
    if not settings.LLM_API_KEY:
        detail += f" {YELLOW}(LLM_API_KEY empty){RESET}"
    return reachable, detail


async def publishing() -> CheckResult:
    from lessonpack.services.credentials import (
        PublishConfigurationError,
        build_credentials,
        load_publish_config,
    )

    try:
        config = load_publish_config()
        build_credentials(config)
    except PublishConfigurationError as e:
        return False, str(e)

    if not config.enabled:
        return True, f"{YELLOW}disabled; packs are generated but not published{RESET}"
    return True, f"{config.mode} via {config.source}"


CHECKS: List[Tuple[str, Callable[[], Awaitable[CheckResult]], bool]] = [
    # (label, check, required)
    ("Python", python_version, True),
    ("Packages", installed_packages, True),
    ("Environment file", env_file, False),
    ("Input directory", input_directory, True),
    ("Generation endpoint", generation_endpoint, False),
    ("Google publishing", publishing, True),
]


async def main() -> int:
    print(f"\n{BLUE}Lesson Pack Generator - setup check{RESET}\n")

    failed_required = 0
    for label, check, required in CHECKS:
        try:
            ok, detail = await check()
        except Exception as e:
            ok, detail = False, f"check crashed: {e}"

        mark = f"{GREEN}✓{RESET}" if ok else (f"{RED}✗{RESET}" if required else f"{YELLOW}!{RESET}")
        print(f"{mark} {label:<20} {detail}")
        if not ok and required:
            failed_required += 1

    if failed_required:
        print(f"\n{RED}{failed_required} required check(s) failed.{RESET}\n")
        return 1

    print(f"\n{GREEN}Ready:{RESET} python -m lessonpack.cli run   |   uvicorn lessonpack.main:app --reload\n")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
