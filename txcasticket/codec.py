# Standard library
import base64
import binascii
import hmac
from urllib.parse import quote_plus, unquote_plus

# Application modules
from txcasticket.constants import TYPE_ST, TICKET_TYPES
from txcasticket.exceptions import (
    CASError, InternalError, MalformedTicket, ExpiredTicket,
    UnknownPrincipal, CorruptedTicket, TicketAlreadyUsed, TicketStoreError)
from txcasticket.interface import ICASUser
from txcasticket.ticket import Ticket

# External modules
from twisted.cred.error import LoginFailed
from twisted.internet import defer
from twisted.python import log


def ticket_type(ticket):
    """
    Extract the type prefix of a ticket string.
    A ticket without a `-` is a CAS 1.0 service ticket.
    """
    if '-' not in ticket:
        return TYPE_ST
    return ticket.split('-', 1)[0]


class TicketCodec(object):
    """
    Encodes, decodes and signs tickets and keeps the ticket store informed
    of fresh tickets.

    The wire format is::

        <TYPE>-base64(login|urlencode(service)|expires|signature)

    @param config: CASConfig
    @param realm: A twisted.cred realm that resolves a login to an ICASUser.
    @param ticket_store: The ITicketStore that tracks unused tickets.
    @param clock: IReactorTime used as the source of "now".
    """

    def __init__(self, config, realm, ticket_store, clock=None):
        if clock is None:
            from twisted.internet import reactor as clock
        self.config = config
        self.realm = realm
        self.ticket_store = ticket_store
        self.clock = clock
        ticket_store.allow_reuse = config.allow_ticket_reuse

    def now(self):
        return self.clock.seconds()

    def generateSignature(self, ticket):
        return ticket.generateSignature(self.config.secret)

    def ticketKey(self, ticket):
        return ticket.generateKey(self.config.secret)

    def encode(self, ticket):
        """
        Serialize a ticket to its wire string.
        """
        login = ticket.login
        if '|' in login:
            raise InternalError("The login '%s' cannot be encoded in a ticket." % login)
        components = [
            login,
            quote_plus(ticket.service, safe=''),
            ticket.expiresString(),
            self.generateSignature(ticket),
        ]
        payload = base64.b64encode('|'.join(components).encode('utf-8'))
        return ticket.type + '-' + payload.decode('ascii')

    def split(self, string):
        """
        Split a ticket string into its components without checking anything
        but its structure.

        Returns a dict with keys `type`, `login`, `service`, `expires`,
        `signature`.
        """
        if '-' not in string:
            string = TYPE_ST + '-' + string
        type_, payload = string.split('-', 1)
        if type_ not in TICKET_TYPES:
            raise MalformedTicket()
        try:
            raw = base64.b64decode(payload.encode('ascii'))
            values = raw.decode('utf-8').split('|')
        except (binascii.Error, UnicodeError, ValueError):
            raise MalformedTicket()
        if len(values) != 4:
            raise MalformedTicket()
        login, service, expires, signature = values
        try:
            expires = float(expires)
        except ValueError:
            raise MalformedTicket()
        if login == "":
            raise MalformedTicket()
        return {
            'type': type_,
            'login': login,
            'service': unquote_plus(service),
            'expires': expires,
            'signature': signature,
        }

    def lookupUser(self, login):
        """
        Resolve a login to an ICASUser through the realm.
        """
        def extract_avatar(result):
            iface, avatar, logout = result
            if avatar is None:
                raise UnknownPrincipal()
            return avatar

        def eb(err):
            err.trap(LoginFailed, UnknownPrincipal)
            raise UnknownPrincipal()

        d = defer.maybeDeferred(self.realm.requestAvatar, login, None, ICASUser)
        d.addCallback(extract_avatar)
        d.addErrback(eb)
        return d

    @defer.inlineCallbacks
    def decode(self, string, checkUsed=True, lookup=None):
        """
        Rebuild a ticket from its wire string.
        `lookup` resolves the embedded login to an ICASUser and defaults to
        the realm.

        Fails with MalformedTicket, ExpiredTicket, UnknownPrincipal,
        CorruptedTicket or, when `checkUsed` is set, TicketAlreadyUsed.
        """
        components = self.split(string)
        if components['expires'] <= self.now():
            raise ExpiredTicket()
        if lookup is None:
            lookup = self.lookupUser
        user = yield lookup(components['login'])
        ticket = Ticket(
            components['type'], user, components['service'], components['expires'])
        signature = self.generateSignature(ticket)
        if not hmac.compare_digest(
                signature.encode('utf-8'), components['signature'].encode('utf-8')):
            raise CorruptedTicket()
        if checkUsed:
            used = yield self.isUsed(ticket)
            if used:
                raise TicketAlreadyUsed()
        return ticket

    @defer.inlineCallbacks
    def issue(self, type, user, service, lifetime=None, proxies=None):
        """
        Create a fresh ticket and record it as unused, along with the proxy
        chain it was issued through.

        Returns a Deferred that fires with (ticket, wire string).
        """
        if lifetime is None:
            lifetime = self.config.lifetime(type)
        ticket = Ticket(type, user, service, self.now() + lifetime, proxies)
        wire = self.encode(ticket)
        yield self._storeCall(
            self.ticket_store.markUnused, self.ticketKey(ticket), wire, lifetime,
            ticket.proxies)
        return (ticket, wire)

    def isUsed(self, ticket):
        d = self._storeCall(self.ticket_store.isUsed, self.ticketKey(ticket))
        return d.addErrback(self._failOpen, False)

    def proxies(self, ticket):
        d = self._storeCall(self.ticket_store.proxies, self.ticketKey(ticket))
        return d.addErrback(self._failOpen, [])

    def consume(self, ticket):
        d = self._storeCall(self.ticket_store.consume, self.ticketKey(ticket))
        return d.addErrback(self._failOpen, True)

    def markUsed(self, ticket):
        return self._storeCall(self.ticket_store.markUsed, self.ticketKey(ticket))

    def _storeCall(self, func, *args):
        """
        Call the ticket store, turning unexpected failures into
        TicketStoreError.
        """
        def eb(err):
            if err.check(CASError):
                return err
            log.err(err, "Ticket store failure.")
            raise TicketStoreError()
        return defer.maybeDeferred(func, *args).addErrback(eb)

    def _failOpen(self, err, result):
        err.trap(TicketStoreError)
        if not self.config.store_fail_open:
            return err
        log.msg(
            '[WARN][CAS] label="Ticket store failure ignored" policy="fail_open" '
            'error="%s"' % err.getErrorMessage())
        return result
