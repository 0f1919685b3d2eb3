"""Local POP3/SMTP front end and end-to-end payload crypto for a mix-network email proxy."""

from mixproxy.crypto.end_to_end import CryptoConfig, HybridCrypto
from mixproxy.pop3.pop3_server import Pop3Server
from mixproxy.pop3.session import Pop3Session, SessionState
from mixproxy.repository import (
    AssembledMessage,
    DirectoryMessageRepository,
    InMemoryMessageRepository,
    MessageRepository,
    MixNode,
)
from mixproxy.smtp.smtp_server import SmtpServer

__version__ = "0.1.0"
__all__ = (
    "CryptoConfig", "HybridCrypto",
    "Pop3Server", "Pop3Session", "SessionState",
    "AssembledMessage", "DirectoryMessageRepository", "InMemoryMessageRepository", "MessageRepository", "MixNode",
    "SmtpServer",
)
