from mixproxy.pop3.mailbox import MailboxSnapshot, dot_stuff, dot_unstuff
from mixproxy.pop3.pop3_server import Pop3Server
from mixproxy.pop3.session import Pop3Session, SessionState

__all__ = ("MailboxSnapshot", "Pop3Server", "Pop3Session", "SessionState", "dot_stuff", "dot_unstuff")
