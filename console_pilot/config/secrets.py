"""Provider API keys from the environment and dotenv files.

Hosted providers (OpenRouter, OpenAI, Anthropic) read their key from a
well-known environment variable. Keys usually live in a ``.env`` file, which
is only loaded when it is private to the current user. Local servers
(LM Studio, Ollama) need no key.
"""

from __future__ import annotations

import logging
import os
import stat
from collections.abc import Iterator
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_FILE_VAR = "CONSOLEPILOT_ENV_FILE"

PROVIDER_ENV_KEYS: dict[str, str | None] = {
    "openrouter": "OPENROUTER_API_KEY",
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "lmstudio": None,
    "ollama": None,
}


class MissingAPIKeyError(ValueError):
    """A hosted provider was selected but its API key is not set."""

    pass


_PLACEHOLDER_API_KEYS = frozenset(
    {
        "your_openrouter_api_key_here",
        "your_openai_api_key_here",
        "your_anthropic_api_key_here",
        "your_api_key_here",
        "changeme",
        "replace_me",
    }
)


def _env_file_candidates(env_file: str | Path | None, start_dir: Path) -> Iterator[tuple[Path, bool]]:
    """Yield ``(path, explicit)`` in lookup order.

    An explicit path (argument or ``CONSOLEPILOT_ENV_FILE``) is the only
    candidate when given. Otherwise ``.env`` in ``start_dir`` and then in
    the project root are tried.
    """
    named = env_file or os.environ.get(ENV_FILE_VAR)
    if named:
        path = Path(named).expanduser()
        yield (path if path.is_absolute() else start_dir / path).resolve(), True
        return
    yield (start_dir / ".env").resolve(), False
    yield (Path(__file__).resolve().parents[2] / ".env").resolve(), False


def _check_private(path: Path) -> None:
    """Refuse dotenv files another user could read or swap out."""
    if path.is_dir():
        raise ValueError(
            f"Dotenv path is a directory: {path}. "
            "Remove or rename that directory and create a .env file (chmod 600)."
        )
    if not path.is_file():
        raise ValueError(f"Dotenv path is not a regular file: {path}")
    if os.name == "nt":
        return

    if path.is_symlink():
        raise PermissionError(f"Refusing to load dotenv symlink: {path}. Use a real file with chmod 600.")
    info = path.stat()
    if hasattr(os, "getuid") and info.st_uid != os.getuid():
        raise PermissionError(f"Refusing to load dotenv owned by another user: {path}.")
    if info.st_mode & (stat.S_IRWXG | stat.S_IRWXO):
        raise PermissionError(f"Insecure dotenv permissions for {path}. Restrict access with chmod 600.")


def load_environment_secrets(
    env_file: str | Path | None = None,
    *,
    override: bool = False,
    strict: bool = True,
    start_dir: Path | None = None,
) -> Path | None:
    """Load provider keys from the first dotenv file found.

    Args:
        env_file: Dotenv path. Falls back to ``CONSOLEPILOT_ENV_FILE``, then
            ``.env`` in ``start_dir``, then ``.env`` in the project root.
        override: Whether dotenv values replace variables already set.
        strict: Whether a missing explicit path raises.
        start_dir: Base for relative paths. Defaults to the working directory.

    Returns:
        The loaded file, or None when there was nothing to load.

    Raises:
        FileNotFoundError: If ``strict`` and an explicit path is missing.
        PermissionError: If the file is readable by other users.
        ValueError: If the path is not a regular file.
    """
    base_dir = (start_dir or Path.cwd()).resolve()
    for path, explicit in _env_file_candidates(env_file, base_dir):
        if not path.exists():
            if explicit and strict:
                raise FileNotFoundError(f"Dotenv file not found: {path}")
            continue
        _check_private(path)
        load_dotenv(dotenv_path=str(path), override=override)
        available = [key for key in PROVIDER_ENV_KEYS.values() if key and os.environ.get(key)]
        logger.debug(f"Loaded {path}; provider keys available: {', '.join(available) or 'none'}")
        return path
    return None


def _is_placeholder_api_key(value: str) -> bool:
    lowered = value.lower()
    return lowered in _PLACEHOLDER_API_KEYS or (lowered.startswith("your_") and lowered.endswith("_here"))


def read_provider_api_key(provider: str) -> str | None:
    """Read and sanitize a provider's API key from the environment.

    Args:
        provider: Provider name, e.g. ``"openrouter"``.

    Returns:
        The key, or None if the provider needs none or it is missing,
        blank or an obvious placeholder.

    Raises:
        ValueError: If the provider is unknown.
    """
    if provider not in PROVIDER_ENV_KEYS:
        raise ValueError(f"Unsupported LLM provider: {provider}")

    env_key = PROVIDER_ENV_KEYS[provider]
    raw = os.environ.get(env_key) if env_key else None
    if raw is None:
        return None

    cleaned = raw.strip().strip('"').strip("'")
    if not cleaned:
        logger.warning(f"{env_key} is set but blank; ignoring it.")
        return None
    if _is_placeholder_api_key(cleaned):
        logger.warning(f"{env_key} appears to be a placeholder value; ignoring it.")
        return None
    return cleaned


def require_provider_api_key(provider: str) -> str | None:
    """Like :func:`read_provider_api_key`, but a hosted provider must have a key.

    Raises:
        MissingAPIKeyError: Naming the variable to set.
    """
    key = read_provider_api_key(provider)
    env_key = PROVIDER_ENV_KEYS[provider]
    if key is None and env_key is not None:
        raise MissingAPIKeyError(f"No API key for {provider}: set {env_key} in the environment or in .env")
    return key
