# Standard library
from html import escape as escape_html
from textwrap import dedent
from urllib.parse import urlencode, urlsplit

# Application modules
from txcasticket.constants import (
    TYPE_ST, TYPE_PT, TYPE_PGT, TYPE_PGTIOU, ERROR_INTERNAL_ERROR)
from txcasticket.exceptions import (
    CASError, InternalError, InvalidProxyCallback, NotHTTPSError)
import txcasticket.http
from txcasticket.response import (
    ValidateResponse, ProxyResponse, plainTextResponse, select_attributes,
    CONTENT_TYPE_TEXT)
from txcasticket.urls import add_query_arg
from txcasticket.utils import http_status_filter, log_cas_event

# External modules
import treq
from twisted.cred.error import Unauthorized
from twisted.internet import defer
from twisted.python import log


CONTENT_TYPE_HTML = 'text/html; charset=utf-8'


def is_true(value):
    """
    Interpret a `renew` or `gateway` request parameter.
    """
    if value is None:
        return False
    return value.strip().lower() in ('true', '1')

def client_ip(request):
    if request is None:
        return ""
    return request.getClientIP()


class Redirect(object):
    """
    Terminal action: send the browser to `url`.
    """

    def __init__(self, url):
        self.url = url

    def __repr__(self):
        return "<Redirect url=%r>" % self.url

    def __eq__(self, other):
        return isinstance(other, Redirect) and other.url == self.url

    def __ne__(self, other):
        return not self.__eq__(other)


class Response(object):
    """
    Terminal action: render `body` with `content_type`.
    """

    def __init__(self, body, content_type=CONTENT_TYPE_HTML, code=200):
        self.body = body
        self.content_type = content_type
        self.code = code

    def __repr__(self):
        return "<Response code=%d content_type=%r>" % (self.code, self.content_type)


def render_error_page():
    return dedent("""\
        <html>
            <head>
                <title>Internal Error - 500</title>
            </head>
            <body>
                <h1>HTTP 500 - Internal Error</h1>
                <p>
                    Please contact your system administrator.
                </p>
            </body>
        </html>
        """)

def render_login_form(lt, service, failed=False):
    html_parts = []
    html_parts.append(dedent('''\
    <html>
        <body>
    '''))
    if failed:
        html_parts.append(
            '        <p>The credentials you provided could not be verified.</p>')
    html_parts.append(dedent('''\
            <form method="post" action="/login">
                Username: <input type="text" name="username" />
                <br />Password: <input type="password" name="password" />
                <input type="hidden" name="lt" value="%(lt)s" />
    ''') % {
        'lt': escape_html(lt),
    })
    if service != "":
        html_parts.append(
            '            '
            '<input type="hidden" name="service" value="%(service)s" />' % {
                'service': escape_html(service)
            })
    html_parts.append(dedent('''\
                <input type="submit" value="Sign in" />
            </form>
        </body>
    </html>
    '''))
    return '\n'.join(html_parts)


class CASControllers(object):
    """
    The CAS protocol endpoints.

    Every method takes the request parameters as a dict of strings plus the
    request (handed to the session provider) and returns a Deferred that
    fires with a L{Redirect} or a L{Response}.  Protocol errors never
    errback.

    @param config: CASConfig
    @param codec: TicketCodec used to mint tickets.
    @param engine: ValidationEngine every presented ticket goes through.
    @param session_provider: ISessionProvider
    @param redirect_filter: Optional callable `(url, ticket) -> url` applied
        to the service redirect after a ticket is issued.  May return a
        Deferred.
    @param http_client: treq-like client used to call pgtUrl callbacks.
    """

    login_url = '/login'

    def __init__(self, config, codec, engine, session_provider,
                 redirect_filter=None, http_client=None):
        self.config = config
        self.codec = codec
        self.engine = engine
        self.session = session_provider
        self.redirect_filter = redirect_filter
        if http_client is None:
            if config.validate_pgturl:
                http_client = treq
            else:
                from twisted.internet import reactor
                http_client = txcasticket.http.createNonVerifyingHTTPClient(reactor)
        self.http_client = http_client

    #-------------------------------------------------------------------
    # Failure rendering
    #-------------------------------------------------------------------

    def failure(self, endpoint, ex):
        """
        Render `ex` the way `endpoint` reports failures.
        """
        if endpoint == 'validate':
            return Response(plainTextResponse(), CONTENT_TYPE_TEXT)
        if endpoint == 'proxy':
            body = ProxyResponse.failure(ex.code, ex.message)
            return Response(body.render(), body.content_type)
        if endpoint in ('login', 'logout', 'loginForm'):
            return Response(render_error_page(), CONTENT_TYPE_HTML, code=500)
        body = ValidateResponse.failure(ex.code, ex.message)
        return Response(body.render(), body.content_type)

    def _internalError(self, err, endpoint, request):
        log.msg('[ERROR] type="error" endpoint="%s" client_ip="%s"' % (
            endpoint, client_ip(request)))
        log.err(err)
        ex = err.value
        if not isinstance(ex, CASError):
            ex = InternalError("An internal error occurred.", ERROR_INTERNAL_ERROR)
        return self.failure(endpoint, ex)

    def _guard(self, endpoint, func, params, request, *args):
        d = defer.maybeDeferred(func, params, request, *args)
        d.addErrback(self._internalError, endpoint, request)
        return d

    #-------------------------------------------------------------------
    # /login
    #-------------------------------------------------------------------

    def login(self, params, request):
        return self._guard('login', self._login, params, request)

    @defer.inlineCallbacks
    def _login(self, params, request):
        service = params.get('service', "")
        username = params.get('username')
        password = params.get('password')
        lt = params.get('lt')
        # TODO: honor `warn` by showing a notice before the silent SSO redirect.
        if username and password and lt:
            result = yield self._acceptCredentials(
                username, password, lt, service, request)
            return result
        if is_true(params.get('renew')):
            yield self.session.destroy(request)
            remaining = dict((k, v) for k, v in params.items() if k != 'renew')
            url = self.login_url
            if len(remaining) > 0:
                url = url + '?' + urlencode(remaining)
            return Redirect(url)
        user = yield self.session.currentPrincipal(request)
        if user is None:
            if is_true(params.get('gateway')) and service != "":
                log_cas_event("Gateway redirect without ticket", [
                    ('client_ip', client_ip(request)),
                    ('service', service)])
                return Redirect(service)
            return Redirect(self.session.authURL({'service': service}))
        log_cas_event("Authenticated via TGC", [
            ('client_ip', client_ip(request)), ('username', user.username)])
        result = yield self._issueServiceTicket(user, service, request)
        return result

    @defer.inlineCallbacks
    def _acceptCredentials(self, username, password, lt, service, request):
        valid_lt = yield self.session.verifyLoginTicket(lt, service)
        if not valid_lt:
            log_cas_event("Invalid login ticket", [
                ('client_ip', client_ip(request)), ('username', username)])
            return Redirect(self.session.authURL({'service': service, 'failed': '1'}))
        try:
            user = yield self.session.authenticate(username, password)
        except Unauthorized:
            log_cas_event("Failed to authenticate using primary credentials", [
                ('client_ip', client_ip(request)), ('username', username)])
            return Redirect(self.session.authURL({'service': service, 'failed': '1'}))
        log_cas_event("Authenticated using primary credentials", [
            ('client_ip', client_ip(request)), ('username', user.username)])
        yield self.session.establish(request, user)
        result = yield self._issueServiceTicket(user, service, request)
        return result

    @defer.inlineCallbacks
    def _issueServiceTicket(self, user, service, request):
        if service == "":
            return Redirect(self.config.home_url)
        ticket, wire = yield self.codec.issue(TYPE_ST, user, service)
        log_cas_event("Created service ticket", [
            ('client_ip', client_ip(request)),
            ('username', user.username),
            ('service', ticket.service)])
        url = add_query_arg(service, 'ticket', wire)
        if self.redirect_filter is not None:
            url = yield defer.maybeDeferred(self.redirect_filter, url, ticket)
        return Redirect(url)

    def loginForm(self, params, request):
        """
        Page that requests primary credentials and posts them to /login.
        """
        return self._guard('loginForm', self._loginForm, params, request)

    @defer.inlineCallbacks
    def _loginForm(self, params, request):
        service = params.get('service', "")
        lt = yield self.session.mkLoginTicket(service)
        return Response(render_login_form(lt, service, is_true(params.get('failed'))))

    #-------------------------------------------------------------------
    # /logout
    #-------------------------------------------------------------------

    def logout(self, params, request):
        return self._guard('logout', self._logout, params, request)

    @defer.inlineCallbacks
    def _logout(self, params, request):
        yield self.session.destroy(request)
        log_cas_event("Explicitly logged out of SSO", [
            ('client_ip', client_ip(request))])
        service = params.get('service', "")
        if service != "":
            return Redirect(service)
        return Redirect(self.config.home_url)

    #-------------------------------------------------------------------
    # Validation
    #-------------------------------------------------------------------

    def validate(self, params, request):
        """
        CAS 1.0 validation.  Never reveals why a ticket was rejected.
        """
        return self._guard('validate', self._validate, params, request)

    @defer.inlineCallbacks
    def _validate(self, params, request):
        ticket = params.get('ticket', "")
        service = params.get('service', "")
        try:
            validated = yield self.engine.validate(ticket, service, (TYPE_ST,))
        except CASError as ex:
            log_cas_event("Failed to validate service ticket (/validate)", [
                ('client_ip', client_ip(request)),
                ('service', service),
                ('code', ex.code),
                ('reason', ex.message)])
            if isinstance(ex, InternalError):
                log.err(ex)
            return Response(plainTextResponse(), CONTENT_TYPE_TEXT)
        log_cas_event("Validated service ticket (/validate)", [
            ('client_ip', client_ip(request)),
            ('username', validated.login),
            ('service', service)])
        return Response(plainTextResponse(validated.login), CONTENT_TYPE_TEXT)

    def serviceValidate(self, params, request):
        return self._guard(
            'serviceValidate', self._validateXML, params, request,
            (TYPE_ST,), '/serviceValidate')

    def proxyValidate(self, params, request):
        return self._guard(
            'proxyValidate', self._validateXML, params, request,
            (TYPE_ST, TYPE_PT), '/proxyValidate')

    @defer.inlineCallbacks
    def _validateXML(self, params, request, allowedTypes, label):
        ticket = params.get('ticket', "")
        service = params.get('service', "")
        pgturl = params.get('pgtUrl', "")
        try:
            validated = yield self.engine.validate(ticket, service, allowedTypes)
            iou = None
            if pgturl != "":
                iou = yield self._proxyCallback(validated, pgturl, request)
        except CASError as ex:
            log_cas_event("Failed to validate ticket (%s)" % label, [
                ('client_ip', client_ip(request)),
                ('service', service),
                ('code', ex.code),
                ('reason', ex.message)])
            if isinstance(ex, InternalError):
                log.err(ex)
            body = ValidateResponse.failure(ex.code, ex.message)
            return Response(body.render(), body.content_type)
        log_cas_event("Validated ticket (%s)" % label, [
            ('client_ip', client_ip(request)),
            ('username', validated.login),
            ('service', service),
            ('type', validated.type)])
        body = ValidateResponse.success(
            validated.login,
            attribs=select_attributes(validated.user, self.config.attributes),
            iou=iou,
            proxies=validated.proxies)
        return Response(body.render(), body.content_type)

    @defer.inlineCallbacks
    def _proxyCallback(self, ticket, pgturl, request):
        """
        Check the pgtUrl, mint a PGT and a PGTIOU, and hand both to the
        callback.  Fires with the PGTIOU.
        """
        if self.config.validate_pgturl:
            if urlsplit(pgturl).scheme.lower() != "https":
                raise NotHTTPSError("The pgtUrl '%s' is not HTTPS." % pgturl)
        try:
            response = yield self.http_client.get(pgturl, timeout=30)
        except Exception as ex:
            raise InvalidProxyCallback("The pgtUrl '%s' is unreachable: %s" % (pgturl, ex))
        response = yield http_status_filter(response, [(200, 200)], InvalidProxyCallback)
        yield treq.content(response)

        pgt, pgt_wire = yield self.codec.issue(
            TYPE_PGT, ticket.user, "", proxies=[pgturl] + ticket.proxies)
        iou, iou_wire = yield self.codec.issue(TYPE_PGTIOU, ticket.user, "")
        log_cas_event("Sending pgtId and pgtIou to client.", [
            ('client_ip', client_ip(request)),
            ('pgturl', pgturl),
            ('username', ticket.login)])
        q = {'pgtId': pgt_wire, 'pgtIou': iou_wire}
        try:
            response = yield self.http_client.get(pgturl, params=q, timeout=30)
            response = yield http_status_filter(
                response, [(200, 200)], InvalidProxyCallback)
            yield treq.content(response)
        except Exception as ex:
            yield self.codec.markUsed(pgt)
            yield self.codec.markUsed(iou)
            if isinstance(ex, InvalidProxyCallback):
                raise
            raise InvalidProxyCallback("The pgtUrl '%s' is unreachable: %s" % (pgturl, ex))
        return iou_wire

    #-------------------------------------------------------------------
    # /proxy
    #-------------------------------------------------------------------

    def proxy(self, params, request):
        return self._guard('proxy', self._proxy, params, request)

    @defer.inlineCallbacks
    def _proxy(self, params, request):
        pgt = params.get('pgt', "")
        targetService = params.get('targetService', "")
        try:
            granting = yield self.engine.validate(pgt, targetService, (TYPE_PGT,))
            ticket, wire = yield self.codec.issue(
                TYPE_PT, granting.user, targetService, proxies=granting.proxies)
        except CASError as ex:
            log_cas_event("Failed to issue proxy ticket", [
                ('client_ip', client_ip(request)),
                ('targetService', targetService),
                ('code', ex.code),
                ('reason', ex.message)])
            if isinstance(ex, InternalError):
                log.err(ex)
            body = ProxyResponse.failure(ex.code, ex.message)
            return Response(body.render(), body.content_type)
        log_cas_event("Issued proxy ticket", [
            ('client_ip', client_ip(request)),
            ('username', ticket.login),
            ('targetService', ticket.service)])
        body = ProxyResponse.success(wire)
        return Response(body.render(), body.content_type)
