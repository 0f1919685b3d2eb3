#!/usr/bin/env python3
"""
mixproxy command line.

Usage:
    python -m mixproxy serve --password secret [--pop3-port 27000] [--mailbox-dir DIR]
    python -m mixproxy keygen --out alice
    python -m mixproxy encrypt --key alice.pub message.eml message.bin
    python -m mixproxy decrypt --key alice.pem message.bin message.eml
"""
from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

from mixproxy import __version__
from mixproxy.config import ProxyConfig
from mixproxy.crypto.end_to_end import (
    CryptoConfig,
    HybridCrypto,
    decode_public_key,
    encode_public_key,
    load_private_key_pem,
    private_key_to_pem,
)
from mixproxy.errors import ProxyError
from mixproxy.logs import configure_logging
from mixproxy.pop3.pop3_server import Pop3Server
from mixproxy.repository import DirectoryMessageRepository, InMemoryMessageRepository
from mixproxy.smtp.smtp_server import SmtpServer

logger = logging.getLogger("mixproxy")


def cmd_serve(args) -> int:
    cfg = ProxyConfig.from_namespace(args)
    configure_logging(cfg.log_level)
    if cfg.mailbox_dir:
        repository = DirectoryMessageRepository(cfg.mailbox_dir)
    else:
        repository = InMemoryMessageRepository()

    pop3 = Pop3Server(cfg.pop3_port, cfg.username, cfg.password, repository,
                      host=cfg.host, idle_timeout=cfg.idle_timeout)
    smtp = SmtpServer(cfg.smtp_port, host=cfg.host, idle_timeout=cfg.idle_timeout)

    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())

    pop3.start()
    try:
        smtp.start()
    except ProxyError:
        pop3.stop()
        raise
    try:
        while not stop.wait(1.0):
            pass
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        smtp.stop()
        pop3.stop()
    return 0


def cmd_keygen(args) -> int:
    crypto = HybridCrypto(CryptoConfig(asymmetric_key_bits=args.bits))
    public_key, private_key = crypto.generate_asymmetric_keypair()
    prefix = Path(args.out)
    prefix.with_suffix(".pem").write_bytes(private_key_to_pem(private_key))
    prefix.with_suffix(".pub").write_text(encode_public_key(public_key) + "\n")
    print(f"Wrote {prefix.with_suffix('.pem')} and {prefix.with_suffix('.pub')}")
    return 0


def cmd_encrypt(args) -> int:
    public_key = decode_public_key(Path(args.key).read_text().strip())
    blob = HybridCrypto().hybrid_encrypt(public_key, Path(args.infile).read_bytes())
    Path(args.outfile).write_bytes(blob)
    return 0


def cmd_decrypt(args) -> int:
    private_key = load_private_key_pem(Path(args.key).read_bytes())
    plaintext = HybridCrypto().hybrid_decrypt(private_key, Path(args.infile).read_bytes())
    Path(args.outfile).write_bytes(plaintext)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mixproxy", description="Mix-network email proxy front end")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="run the local POP3 and SMTP servers")
    ProxyConfig.add_arguments(serve)
    serve.set_defaults(func=cmd_serve)

    keygen = sub.add_parser("keygen", help="create an RSA keypair for end-to-end encryption")
    keygen.add_argument("--out", required=True, help="path prefix for .pem/.pub files")
    keygen.add_argument("--bits", type=int, default=CryptoConfig.asymmetric_key_bits)
    keygen.set_defaults(func=cmd_keygen)

    for name, key_help, func in (
        ("encrypt", "recipient .pub file", cmd_encrypt),
        ("decrypt", "own .pem private key", cmd_decrypt),
    ):
        p = sub.add_parser(name, help=f"{name} a payload file")
        p.add_argument("--key", required=True, help=key_help)
        p.add_argument("infile")
        p.add_argument("outfile")
        p.set_defaults(func=func)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except ProxyError as e:
        print(f"[!] {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
