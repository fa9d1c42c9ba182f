# Standard library
import hashlib
import hmac

# Application modules
from txcasticket.urls import normalize_service


def hmac_hex(key, msg):
    """
    HMAC-SHA256 of `msg` keyed by `key`, as a hex string.
    """
    if not isinstance(key, bytes):
        key = key.encode('utf-8')
    return hmac.new(key, msg.encode('utf-8'), hashlib.sha256).hexdigest()


class Ticket(object):
    """
    A CAS ticket.

    A ticket has no identity of its own.  Its wire string is built from the
    owner's login, the service it is bound to and its expiration timestamp,
    and is signed with a key derived from the site secret, the owner's
    current credential fragment and the expiration.  Nothing but the
    "unused" marker for the derived key is ever stored.

    @param type: Ticket type (ST, PT, PGT, PGTIOU, TGC, LT).
    @param user: The ICASUser avatar that owns the ticket.
    @param service: Service URL the ticket is bound to.  Empty when the
        ticket is not bound to a service.
    @param expires: Expiration timestamp, in seconds since the epoch.
    @param proxies: Proxy callback URLs the ticket was issued through, most
        recent first.  Kept in the ticket store, not in the wire string.
    """

    def __init__(self, type, user, service, expires, proxies=None):
        self.type = type
        self.user = user
        self.service = normalize_service(service)
        self.expires = float(expires)
        self.proxies = list(proxies or [])

    def __repr__(self):
        return "<Ticket type=%s user=%r service=%r expires=%r>" % (
            self.type, self.login, self.service, self.expires)

    @property
    def login(self):
        return self.user.username

    def expiresString(self):
        """
        Decimal representation of the expiration timestamp.  `repr()` is
        the shortest string that reproduces the same float.
        """
        return repr(self.expires)

    def generateKey(self, secret):
        """
        Derive the ticket key from the site secret, the owner's credential
        fragment and the expiration.  The key doubles as the lookup key in
        the ticket store, so the type and service are mixed in to keep
        distinct tickets issued in the same instant apart.
        """
        components = [
            self.type,
            self.login,
            self.user.credential or "",
            self.service,
            self.expiresString(),
        ]
        return hmac_hex(secret, '|'.join(components))

    def generateSignature(self, secret):
        """
        Sign the login, service and expiration with the ticket key.
        """
        components = [
            self.login,
            self.service,
            self.expiresString(),
        ]
        return hmac_hex(self.generateKey(secret), '|'.join(components))

    def isBound(self):
        return self.service != ""
