"""Exception hierarchy shared by the POP3 front end and the end-to-end crypto."""


class ProxyError(Exception):
    """Root of every error raised by mixproxy."""


class ConfigError(ProxyError):
    pass


# --- POP3 session errors (text becomes the -ERR reply) ---

class ProtocolError(ProxyError):
    """Malformed, unknown or out-of-sequence command."""


class AuthenticationFailure(ProxyError):
    """USER/PASS did not match the configured credentials."""


class NotFoundError(ProxyError):
    """Message number out of range or already marked deleted."""


class RepositoryError(ProxyError):
    """A call into the message store failed."""


# --- Server lifecycle ---

class BindError(ProxyError):
    """The listening socket could not be bound."""


class ServerStateError(ProxyError):
    pass


# --- End-to-end crypto ---

class CryptoError(ProxyError):
    pass


class CryptoConfigError(CryptoError):
    pass


class KeyGenerationError(CryptoError):
    pass


class CryptoFormatError(CryptoError):
    """Blob is not exactly three length-prefixed binary fields."""


class CryptoAuthenticationFailure(CryptoError):
    """Key unwrap failed or the GCM tag did not verify."""
