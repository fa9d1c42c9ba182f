# Application modules
from txcasticket.codec import TicketCodec
from txcasticket.controllers import CASControllers, Redirect
from txcasticket.exceptions import BadRequestError, InternalError, RequestError
from txcasticket.session import CookieSessionProvider
from txcasticket.utils import log_http_event
from txcasticket.validation import ValidationEngine

# External modules
from klein import Klein
from twisted.cred.portal import Portal
from twisted.python import log
from twisted.web.http import datetimeToString
import werkzeug.exceptions


#=======================================================================

# Request arguments that never reach the HTTP log.
REDACTED_ARGS = ('password',)

def request_params(request):
    """
    Decode request.args into a dict of strings.
    Raises txcasticket.exceptions.BadRequestError if any parameter is
    given more than once.
    """
    params = {}
    for key, value_list in request.args.items():
        if isinstance(key, bytes):
            key = key.decode('utf-8', 'replace')
        if len(value_list) != 1:
            raise BadRequestError(
                "Multiple values for parameter '%s' were provided." % key)
        value = value_list[0]
        if isinstance(value, bytes):
            value = value.decode('utf-8', 'replace')
        params[key] = value
    return params


#=======================================================================
# The server app
#=======================================================================

class ServerApp(object):

    app = Klein()

    def __init__(self, config, ticket_store, realm, checkers,
                 redirect_filter=None, http_client=None, clock=None):
        """
        Initialize an instance of the CAS server.

        @param config: The CASConfig.
        @param ticket_store: The ITicketStore that tracks unused tickets.
        @param realm: The t.c.p.Portal asks the realm for an avatar.  The
            codec also resolves ticket logins through it.
        @param checkers: A list of credential checkers to try (in order).
        @param redirect_filter: Optional callable `(url, ticket) -> url`
            applied to the redirect after a service ticket is issued.
        @param http_client: treq-like client for pgtUrl callbacks.
        @param clock: IReactorTime; defaults to the reactor.
        """
        assert ticket_store is not None, "No Ticket Store was configured."
        assert realm is not None, "No Realm was configured."
        assert len(checkers) > 0, "No Credential Checkers were configured."
        for n, checker in enumerate(checkers):
            assert checker is not None, "Credential Checker #%d was not configured." % n
        if clock is None:
            from twisted.internet import reactor as clock
        self.clock = clock
        self.config = config
        self.ticket_store = ticket_store
        self.realm = realm
        self.portal = Portal(realm)
        for checker in checkers:
            self.portal.registerChecker(checker)
        self.codec = TicketCodec(config, realm, ticket_store, clock=clock)
        self.engine = ValidationEngine(self.codec)
        self.session = CookieSessionProvider(config, self.codec, self.portal)
        self.controllers = CASControllers(
            config, self.codec, self.engine, self.session,
            redirect_filter=redirect_filter, http_client=http_client)

    def _setHeaders(self, request):
        request.setHeader(b'pragma', b'no-cache')
        request.setHeader(b'cache-control', b'no-store')
        request.setHeader(b'expires', datetimeToString(self.clock.seconds()))

    def _render(self, result, request):
        """
        Apply a controller result to the request.
        """
        if isinstance(result, Redirect):
            if request.method == b'POST':
                request.setResponseCode(303)
            else:
                request.setResponseCode(302)
            request.setHeader(b'location', result.url.encode('utf-8'))
            return b""
        request.setResponseCode(result.code)
        request.setHeader(b'content-type', result.content_type.encode('ascii'))
        return result.body.encode('utf-8')

    def _renderFailure(self, request, endpoint, ex):
        log.msg('[ERROR] type="%s" client_ip="%s" path="%s" message="%s"' % (
            ex.code, request.getClientIP(), request.path, ex.message))
        return self._render(self.controllers.failure(endpoint, ex), request)

    def _dispatch(self, request, endpoint):
        log_http_event(request, redact_args=REDACTED_ARGS)
        self._setHeaders(request)
        if self.config.require_ssl and not request.isSecure():
            return self._renderFailure(
                request, endpoint, InternalError("The CAS server requires SSL."))
        try:
            params = request_params(request)
        except BadRequestError as ex:
            return self._renderFailure(request, endpoint, ex)
        d = getattr(self.controllers, endpoint)(params, request)
        d.addCallback(self._render, request)
        return d

    @app.route('/login', methods=['GET'])
    def login_GET(self, request):
        """
        Issue a service ticket from an existing session, or send the
        browser to the login form.
        """
        return self._dispatch(request, 'login')

    @app.route('/login', methods=['POST'])
    def login_POST(self, request):
        """
        Accept a username/password, verify the credentials and redirect them
        appropriately.
        """
        return self._dispatch(request, 'login')

    @app.route('/loginForm', methods=['GET'])
    def loginForm_GET(self, request):
        return self._dispatch(request, 'loginForm')

    @app.route('/logout', methods=['GET'])
    def logout_GET(self, request):
        return self._dispatch(request, 'logout')

    @app.route('/validate', methods=['GET'])
    def validate_GET(self, request):
        """
        Validate a service ticket, consuming the ticket in the process.
        """
        return self._dispatch(request, 'validate')

    @app.route('/serviceValidate', methods=['GET'])
    def serviceValidate_GET(self, request):
        return self._dispatch(request, 'serviceValidate')

    @app.route('/proxyValidate', methods=['GET'])
    def proxyValidate_GET(self, request):
        return self._dispatch(request, 'proxyValidate')

    @app.route('/p3/serviceValidate', methods=['GET'])
    def p3_serviceValidate_GET(self, request):
        return self._dispatch(request, 'serviceValidate')

    @app.route('/p3/proxyValidate', methods=['GET'])
    def p3_proxyValidate_GET(self, request):
        return self._dispatch(request, 'proxyValidate')

    @app.route('/proxy', methods=['GET'])
    def proxy_GET(self, request):
        return self._dispatch(request, 'proxy')

    @app.handle_errors(werkzeug.exceptions.NotFound)
    def error_handler(self, request, failure):
        log.msg('[ERROR] type="not_found" client_ip="%s" path="%s"' % (
                    request.getClientIP(), request.path))
        self._setHeaders(request)
        response = self._render(
            self.controllers.failure(
                'unknown',
                RequestError("The server does not support the method requested.")),
            request)
        request.setResponseCode(404)
        return response
