"""Runtime configuration for the proxy servers.

Values come from command-line flags first, then ``MIXPROXY_*`` environment
variables, then the defaults below.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from mixproxy.errors import ConfigError

DEFAULT_HOST = "127.0.0.1"
DEFAULT_POP3_PORT = 27000
DEFAULT_SMTP_PORT = 28000
DEFAULT_USERNAME = "proxyuser"
DEFAULT_IDLE_TIMEOUT = 600.0   # RFC 1939 autologout

ENV_PREFIX = "MIXPROXY_"


@dataclass
class ProxyConfig:
    host: str = DEFAULT_HOST
    pop3_port: int = DEFAULT_POP3_PORT
    smtp_port: int = DEFAULT_SMTP_PORT
    username: str = DEFAULT_USERNAME
    password: str = ""
    idle_timeout: Optional[float] = DEFAULT_IDLE_TIMEOUT
    mailbox_dir: Optional[str] = None
    log_level: str = "INFO"

    @staticmethod
    def add_arguments(parser):
        parser.add_argument("--host", help=f"bind address (default {DEFAULT_HOST})")
        parser.add_argument("--pop3-port", help=f"POP3 port (default {DEFAULT_POP3_PORT})")
        parser.add_argument("--smtp-port", help=f"SMTP port (default {DEFAULT_SMTP_PORT})")
        parser.add_argument("--username", help="POP3 login name")
        parser.add_argument("--password", help="POP3 password")
        parser.add_argument("--idle-timeout", help="seconds before an idle session is dropped, 0 disables")
        parser.add_argument("--mailbox-dir", help="serve .eml files from this directory")
        parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ...")

    @classmethod
    def from_namespace(cls, ns, environ: Optional[Mapping[str, str]] = None) -> "ProxyConfig":
        env = os.environ if environ is None else environ

        def pick(attr):
            value = getattr(ns, attr, None)
            if value is None:
                value = env.get(ENV_PREFIX + attr.upper())
            return value

        cfg = cls()
        host = pick("host")
        if host:
            cfg.host = host
        for attr in ("pop3_port", "smtp_port"):
            raw = pick(attr)
            if raw is not None:
                setattr(cfg, attr, _parse_port(attr, raw))
        username = pick("username")
        if username:
            cfg.username = username
        password = pick("password")
        if password is not None:
            cfg.password = password
        raw_timeout = pick("idle_timeout")
        if raw_timeout is not None:
            cfg.idle_timeout = _parse_timeout(raw_timeout)
        cfg.mailbox_dir = pick("mailbox_dir") or None
        level = pick("log_level")
        if level:
            cfg.log_level = level.upper()

        if not cfg.password:
            raise ConfigError("a POP3 password is required (--password or MIXPROXY_PASSWORD)")
        return cfg


def _parse_port(name, raw) -> int:
    try:
        port = int(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    if not 0 <= port <= 65535:
        raise ConfigError(f"{name} out of range: {port}")
    return port


def _parse_timeout(raw) -> Optional[float]:
    try:
        seconds = float(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"idle_timeout must be a number, got {raw!r}") from None
    if seconds < 0:
        raise ConfigError("idle_timeout cannot be negative")
    return seconds or None
