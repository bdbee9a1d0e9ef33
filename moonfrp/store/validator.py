"""Validation rules for FRP server, client and visitor configs."""

from __future__ import annotations

import ipaddress
import re
import tomllib
from dataclasses import dataclass, field
from typing import Any

from moonfrp.store.config_store import get_field

MIN_SERVER_TOKEN_LENGTH = 8

_DOMAIN_RE = re.compile(
    r"^(?=.{1,253}$)([A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?)(\.[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*$"
)


@dataclass(frozen=True)
class ValidationOutcome:
    ok: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def reason(self) -> str:
        return "; ".join(self.errors)


def is_valid_port(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 1 <= value <= 65535


def is_valid_host(value: Any) -> bool:
    if not isinstance(value, str) or not value:
        return False
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        return bool(_DOMAIN_RE.match(value))


class ConfigValidator:
    """Checks a TOML body against the rules for its config type."""

    def validate(self, body: str, config_type: str) -> ValidationOutcome:
        try:
            document = tomllib.loads(body)
        except tomllib.TOMLDecodeError as exc:
            return ValidationOutcome(ok=False, errors=[f"TOML syntax error: {exc}"])

        errors: list[str] = []
        warnings: list[str] = []
        if config_type == "server":
            self._check_server(document, errors)
        elif config_type in ("client", "visitor"):
            self._check_client(document, errors, warnings, visitor=config_type == "visitor")
        return ValidationOutcome(ok=not errors, errors=errors, warnings=warnings)

    def _check_server(self, document: dict[str, Any], errors: list[str]) -> None:
        bind_port = document.get("bindPort")
        if bind_port is None:
            errors.append("Missing required field 'bindPort'")
        elif not is_valid_port(bind_port):
            errors.append(f"Invalid bindPort: {bind_port} (must be 1-65535)")

        token = get_field(document, "auth.token")
        if not isinstance(token, str) or not token:
            errors.append("Missing required field 'auth.token'")
        elif len(token) < MIN_SERVER_TOKEN_LENGTH:
            errors.append(
                f"auth.token too short (minimum {MIN_SERVER_TOKEN_LENGTH} characters)"
            )

    def _check_client(
        self,
        document: dict[str, Any],
        errors: list[str],
        warnings: list[str],
        visitor: bool = False,
    ) -> None:
        server_addr = document.get("serverAddr")
        if server_addr is None:
            errors.append("Missing required field 'serverAddr'")
        elif not is_valid_host(server_addr):
            errors.append(f"Invalid serverAddr: {server_addr} (must be an IP or domain)")

        server_port = document.get("serverPort")
        if server_port is None:
            errors.append("Missing required field 'serverPort'")
        elif not is_valid_port(server_port):
            errors.append(f"Invalid serverPort: {server_port} (must be 1-65535)")

        token = get_field(document, "auth.token")
        if not isinstance(token, str) or not token:
            errors.append("Missing required field 'auth.token'")

        if visitor:
            if not document.get("visitors"):
                warnings.append("No [[visitors]] defined")
        elif not document.get("proxies"):
            warnings.append("No [[proxies]] defined")
