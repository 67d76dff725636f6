"""Persisted user configuration for the chat client.

Settings live in ``~/.parley/settings.json``. The API key never touches the
file in plaintext: it is stored as a ``fernet:<token>`` string encrypted with
a key kept beside the settings file. Values are layered file, then CLI
overrides, then ``PARLEY_*`` environment variables.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

__all__ = ["Settings", "SettingsStore", "SecretVault", "redact_secret"]

LOGGER = logging.getLogger(__name__)

_CONFIG_HOME = Path.home() / ".parley"
_FILE_FORMAT = 1
_CIPHERTEXT_KEY = "api_key_ciphertext"
_VAULT_SCHEME = "fernet"
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}


def _as_bool(raw: str) -> bool:
    return raw.strip().lower() in _TRUE_VALUES


# env var -> (settings field, converter)
_ENVIRONMENT: Mapping[str, tuple[str, Callable[[str], Any]]] = {
    "PARLEY_API_KEY": ("api_key", str),
    "PARLEY_BASE_URL": ("base_url", str),
    "PARLEY_MODEL": ("model", str),
    "PARLEY_SYSTEM_PROMPT": ("system_prompt", str),
    "PARLEY_ENABLE_STREAM": ("enable_stream", _as_bool),
    "PARLEY_ENABLE_TOOLS": ("enable_tools", _as_bool),
    "PARLEY_DEBUG_LOGGING": ("debug_logging", _as_bool),
    "PARLEY_TEMPERATURE": ("temperature", float),
    "PARLEY_REQUEST_TIMEOUT": ("request_timeout", float),
    "PARLEY_MAX_TOKENS": ("max_tokens", int),
    "PARLEY_MAX_TOOL_ITERATIONS": ("max_tool_iterations", int),
}


@dataclass(slots=True)
class Settings:
    """User-level configuration persisted between sessions.

    ``mcp_servers`` holds provider definitions either as a list of mappings
    or as the JSON string form; :mod:`parley.services.providers` parses both.
    """

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-3.5-turbo"
    temperature: float = 0.7
    max_tokens: int = 2000
    custom_headers: dict[str, str] = field(default_factory=dict)
    custom_body_fields: dict[str, Any] = field(default_factory=dict)
    override_default_body: bool = False
    enable_stream: bool = True
    enable_tools: bool = True
    system_prompt: str = ""
    enabled_tools: list[str] = field(default_factory=list)
    mcp_servers: list[dict[str, Any]] | str = field(default_factory=list)
    selected_mcp_servers: list[str] = field(default_factory=list)
    request_timeout: float = 60.0
    max_tool_iterations: int = 10
    debug_logging: bool = False


_FIELD_NAMES = frozenset(item.name for item in fields(Settings))


class SecretVault:
    """Fernet encryption for the stored API key.

    The key file is created on first use with owner-only permissions.
    """

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_CONFIG_HOME / "settings.key")
        self._fernet: Fernet | None = None

    @property
    def key_path(self) -> Path:
        return self._key_path

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._cipher().encrypt(secret.encode("utf-8")).decode("ascii")
        return f"{_VAULT_SCHEME}:{token}"

    def decrypt(self, token: str | None) -> str:
        """Return the plaintext for ``token``.

        Raises:
            ValueError: If the token names another backend or fails to verify.
        """
        if not token:
            return ""
        scheme, sep, body = token.partition(":")
        if not sep:
            scheme, body = _VAULT_SCHEME, token
        if scheme != _VAULT_SCHEME:
            raise ValueError(f"Secret was stored with unsupported backend '{scheme}'")
        try:
            return self._cipher().decrypt(body.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("API key token failed verification") from exc

    def _cipher(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._read_or_create_key())
        return self._fernet

    def _read_or_create_key(self) -> bytes:
        if self._key_path.exists():
            return self._key_path.read_bytes().strip()
        self._key_path.parent.mkdir(parents=True, exist_ok=True)
        key = Fernet.generate_key()
        staging = self._key_path.with_suffix(".tmp")
        staging.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - POSIX only
            os.chmod(staging, 0o600)
        staging.replace(self._key_path)
        LOGGER.info("Created settings encryption key at %s", self._key_path)
        return key


class SettingsStore:
    """Reads and writes :class:`Settings` as JSON."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = Path(path) if path is not None else _CONFIG_HOME / "settings.json"
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Return the stored settings with CLI and environment overrides applied.

        A missing or unreadable file yields defaults. A file holding a
        plaintext ``api_key`` or an older format is rewritten in place.
        """
        stored = self._read_file()
        settings, rewrite = self._from_stored(stored)
        if rewrite:
            try:
                self.save(settings)
            except OSError as exc:
                LOGGER.warning("Could not rewrite settings file %s: %s", self._path, exc)

        settings = _overlay(settings, overrides or {}, origin="command line")
        settings = _overlay(settings, _environment_values(), origin="environment")
        LOGGER.debug(
            "Settings ready (file=%s, model=%s, base_url=%s, api_key=%s)",
            self._path,
            settings.model,
            settings.base_url,
            redact_secret(settings.api_key) or "<unset>",
        )
        return settings

    def save(self, settings: Settings) -> Path:
        """Write ``settings`` atomically; the API key is stored encrypted."""

        document = asdict(settings)
        api_key = document.pop("api_key", "")
        if api_key:
            try:
                document[_CIPHERTEXT_KEY] = self._vault.encrypt(api_key)
            except OSError as exc:
                LOGGER.warning("API key not saved, encryption failed: %s", exc)
        document["version"] = _FILE_FORMAT

        self._path.parent.mkdir(parents=True, exist_ok=True)
        staging = self._path.with_suffix(".tmp")
        staging.write_text(json.dumps(document, indent=2, sort_keys=True), encoding="utf-8")
        staging.replace(self._path)
        LOGGER.debug("Settings written to %s", self._path)
        return self._path

    def _read_file(self) -> Dict[str, Any]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            LOGGER.warning("Ignoring settings file %s: invalid JSON (%s)", self._path, exc)
            return {}
        if not isinstance(document, dict):
            LOGGER.warning("Ignoring settings file %s: expected a JSON object", self._path)
            return {}
        return document

    def _from_stored(self, stored: Dict[str, Any]) -> tuple[Settings, bool]:
        if not stored:
            return Settings(), False

        ciphertext = stored.pop(_CIPHERTEXT_KEY, None)
        plaintext = stored.pop("api_key", None)
        rewrite = stored.get("version") != _FILE_FORMAT

        api_key = ""
        if ciphertext:
            try:
                api_key = self._vault.decrypt(ciphertext)
            except (OSError, ValueError) as exc:
                LOGGER.warning("Stored API key could not be decrypted: %s", exc)
        elif plaintext:
            LOGGER.info("Encrypting plaintext API key found in %s", self._path)
            api_key, rewrite = plaintext, True

        known = {key: value for key, value in stored.items() if key in _FIELD_NAMES}
        try:
            settings = Settings(**known)
        except TypeError as exc:
            LOGGER.warning("Settings file %s has unusable values: %s", self._path, exc)
            settings = Settings()
        if api_key:
            settings = replace(settings, api_key=api_key)
        return settings, rewrite


def _overlay(settings: Settings, values: Mapping[str, Any], *, origin: str) -> Settings:
    updates = {key: value for key, value in values.items() if key in _FIELD_NAMES and value is not None}
    if not updates:
        return settings
    LOGGER.debug("Settings overridden from %s: %s", origin, sorted(updates))
    return replace(settings, **updates)


def _environment_values() -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for env_name, (field_name, convert) in _ENVIRONMENT.items():
        raw = os.environ.get(env_name)
        if raw is None:
            continue
        try:
            values[field_name] = convert(raw)
        except ValueError:
            LOGGER.warning("Ignoring %s=%r: not a valid %s", env_name, raw, convert.__name__)
    return values


def redact_secret(value: str) -> str:
    """Mask all but the first and last two characters of ``value``."""

    stripped = (value or "").strip()
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return stripped[:2] + "*" * (len(stripped) - 4) + stripped[-2:]
