# Standard library
from urllib.parse import urlencode
import uuid

# Application modules
from txcasticket.casuser import User
from txcasticket.codec import ticket_type
from txcasticket.constants import TYPE_LT, TYPE_TGC
from txcasticket.exceptions import (
    InvalidLoginTicket, InvalidService, TicketError)
from txcasticket.interface import ICASUser, ISessionProvider
from txcasticket.urls import normalize_service
from txcasticket.utils import log_cas_event

# External modules
from twisted.cred.credentials import UsernamePassword
from twisted.internet import defer
from twisted.python import log
from zope.interface import implementer


def extract_avatar(result):
    """
    Extract the avatarAspect from (iface, aspect, logout).
    """
    iface, aspect, logout = result
    return aspect

def nonce_user(login):
    """
    Login tickets carry a random nonce where other tickets carry a login.
    """
    return defer.succeed(User(login, None))


@implementer(ISessionProvider)
class CookieSessionProvider(object):
    """
    Single sign-on sessions kept in a signed TGC ticket stored in an
    HttpOnly cookie.

    @param config: CASConfig
    @param codec: TicketCodec used to issue and read TGC and LT tickets.
    @param portal: A twisted.cred Portal that checks primary credentials.
    @param login_form_url: Where browsers are sent for credentials.
    """

    cookie_name = b'tgc'
    cookie_path = b'/'

    def __init__(self, config, codec, portal, login_form_url='/loginForm'):
        self.config = config
        self.codec = codec
        self.portal = portal
        self.login_form_url = login_form_url

    def _getCookie(self, request):
        value = request.getCookie(self.cookie_name)
        if not value:
            return None
        if isinstance(value, bytes):
            value = value.decode('utf-8', 'replace')
        return value

    def _clearCookie(self, request):
        request.addCookie(
            self.cookie_name, b'', path=self.cookie_path,
            expires='Thu, 01 Jan 1970 00:00:00 GMT')

    def currentPrincipal(self, request):
        tgc = self._getCookie(request)
        if tgc is None:
            return defer.succeed(None)

        def eb(err):
            err.trap(TicketError)
            log_cas_event("Rejected TGC", [
                ('client_ip', request.getClientIP()),
                ('reason', err.getErrorMessage())])
            self._clearCookie(request)
            return None

        if ticket_type(tgc) != TYPE_TGC:
            self._clearCookie(request)
            return defer.succeed(None)
        d = self.codec.decode(tgc)
        d.addCallback(lambda ticket: ticket.user)
        d.addErrback(eb)
        return d

    @defer.inlineCallbacks
    def establish(self, request, user):
        ticket, wire = yield self.codec.issue(TYPE_TGC, user, "")
        request.addCookie(
            self.cookie_name, wire.encode('utf-8'),
            path=self.cookie_path,
            secure=self.config.require_ssl,
            httpOnly=True)
        log_cas_event("Created TGC", [
            ('client_ip', request.getClientIP()),
            ('username', user.username)])
        return wire

    @defer.inlineCallbacks
    def destroy(self, request):
        tgc = self._getCookie(request)
        if tgc is None:
            return
        self._clearCookie(request)
        try:
            ticket = yield self.codec.decode(tgc, checkUsed=False)
        except TicketError:
            return
        yield self.codec.markUsed(ticket)
        log_cas_event("Destroyed TGC", [
            ('client_ip', request.getClientIP()),
            ('username', ticket.login)])

    def authenticate(self, username, password):
        credentials = UsernamePassword(
            username.encode('utf-8'), password.encode('utf-8'))
        d = self.portal.login(credentials, None, ICASUser)
        d.addCallback(extract_avatar)
        return d

    def authURL(self, params):
        params = dict((k, v) for k, v in params.items() if v)
        if len(params) == 0:
            return self.login_form_url
        return self.login_form_url + '?' + urlencode(params)

    def mkLoginTicket(self, service):
        """
        Returns a Deferred that fires with a fresh login ticket string.
        """
        d = self.codec.issue(TYPE_LT, User(uuid.uuid4().hex, None), service)
        d.addCallback(lambda result: result[1])
        return d

    @defer.inlineCallbacks
    def verifyLoginTicket(self, ticket, service):
        try:
            if ticket_type(ticket) != TYPE_LT:
                raise InvalidLoginTicket()
            lt = yield self.codec.decode(ticket, checkUsed=False, lookup=nonce_user)
            if lt.service != normalize_service(service):
                raise InvalidService()
            fresh = yield self.codec.consume(lt)
        except (TicketError, InvalidService) as ex:
            log.msg('[WARN][CAS] label="Rejected login ticket" reason="%s"' % ex.message)
            return False
        return fresh
