from mixproxy.smtp.smtp_server import SmtpServer

__all__ = ("SmtpServer",)
