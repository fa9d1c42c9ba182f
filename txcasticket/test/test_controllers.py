# Standard modules
from urllib.parse import urlencode, urlsplit, parse_qs
# Application modules
from txcasticket.controllers import CASControllers, Redirect, is_true
from txcasticket.test.fakes import (
    FakeRequest, FakeSessionProvider, fake_response, make_codec,
    parse_cas_response, element_text)
from txcasticket.validation import ValidationEngine
# External modules
import mock
from twisted.internet import defer, task
from twisted.trial.unittest import TestCase


class IsTrueTest(TestCase):

    def test_is_true(self):
        for value in ('true', 'TRUE', 'True', '1'):
            self.assertTrue(is_true(value))
        for value in (None, '', 'false', '0', 'yes'):
            self.assertFalse(is_true(value))


class ControllersTestCase(TestCase):
    """
    Shared fixture: a session provider that can be set to a logged-in user,
    and an HTTP client that answers pgtUrl callbacks.
    """

    service = "http://service.example.net/theservice"
    pgturl = "https://proxy.example.net/pgtcallback"
    target = "http://backend.example.net/resource"

    def setUp(self):
        self.clock = task.Clock()
        self.clock.advance(1000000)
        self.codec = make_codec(self.clock)
        self.config = self.codec.config
        self.engine = ValidationEngine(self.codec)
        self.session = FakeSessionProvider(
            self.codec, passwords={'jane.smith': 'password'})
        self.callbacks = []
        self.httpClient = mock.Mock()
        self.httpClient.get.side_effect = self.simulatePGTCallback
        self.controllers = self.makeControllers()

    def makeControllers(self, **kwds):
        return CASControllers(
            self.config, self.codec, self.engine, self.session,
            http_client=self.httpClient, **kwds)

    def simulatePGTCallback(self, url, params=None, timeout=None):
        self.callbacks.append((url, params))
        return defer.succeed(fake_response(200))

    @defer.inlineCallbacks
    def loginAs(self, login='jane.smith'):
        user = yield self.codec.lookupUser(login)
        self.session.principal = user
        return user

    def ticketFrom(self, redirect):
        self.assertIsInstance(redirect, Redirect)
        p = urlsplit(redirect.url)
        return parse_qs(p.query)['ticket'][0]

    @defer.inlineCallbacks
    def getServiceTicket(self, service=None):
        if service is None:
            service = self.service
        yield self.loginAs()
        result = yield self.controllers.login({'service': service}, FakeRequest())
        return self.ticketFrom(result)

    def parseSuccess(self, response):
        root, children = parse_cas_response(response.body)
        self.assertEqual(children[0].tagName, 'cas:authenticationSuccess', response.body)
        return children[0]

    def assertFailureCode(self, response, code, tag='cas:authenticationFailure'):
        self.assertEqual(response.code, 200)
        root, children = parse_cas_response(response.body)
        self.assertEqual(children[0].tagName, tag)
        self.assertEqual(children[0].getAttribute('code'), code)


class LoginTest(ControllersTestCase):

    @defer.inlineCallbacks
    def test_no_session(self):
        result = yield self.controllers.login({'service': self.service}, FakeRequest())
        self.assertEqual(result, Redirect('/loginForm?service=' + self.service))

    @defer.inlineCallbacks
    def test_sso(self):
        ticket = yield self.getServiceTicket()
        self.assertTrue(ticket.startswith('ST-'))
        response = yield self.controllers.validate(
            {'ticket': ticket, 'service': self.service}, FakeRequest())
        self.assertEqual(response.body, 'yes\njane.smith\n')
        self.assertEqual(response.content_type, 'text/plain; charset=utf-8')

    @defer.inlineCallbacks
    def test_service_query_kept(self):
        service = self.service + '?a=1&b=2'
        ticket = yield self.getServiceTicket(service)
        response = yield self.controllers.validate(
            {'ticket': ticket, 'service': service}, FakeRequest())
        self.assertEqual(response.body, 'yes\njane.smith\n')

    @defer.inlineCallbacks
    def test_no_service(self):
        yield self.loginAs()
        self.config.home_url = 'http://www.example.org/home'
        result = yield self.controllers.login({}, FakeRequest())
        self.assertEqual(result, Redirect('http://www.example.org/home'))
        self.assertEqual(len(self.codec.ticket_store), 0)

    @defer.inlineCallbacks
    def test_gateway(self):
        params = {'service': self.service, 'gateway': 'true'}
        result = yield self.controllers.login(params, FakeRequest())
        self.assertEqual(result, Redirect(self.service))

    @defer.inlineCallbacks
    def test_gateway_with_session(self):
        yield self.loginAs()
        params = {'service': self.service, 'gateway': 'true'}
        result = yield self.controllers.login(params, FakeRequest())
        self.assertTrue(self.ticketFrom(result).startswith('ST-'))

    @defer.inlineCallbacks
    def test_gateway_without_service(self):
        result = yield self.controllers.login({'gateway': '1'}, FakeRequest())
        self.assertEqual(result, Redirect('/loginForm'))

    @defer.inlineCallbacks
    def test_renew(self):
        yield self.loginAs()
        params = {'service': self.service, 'renew': 'true'}
        result = yield self.controllers.login(params, FakeRequest())
        self.assertEqual(result, Redirect('/login?' + urlencode({'service': self.service})))
        self.assertEqual(self.session.destroyed, 1)
        self.assertIsNone(self.session.principal)
        self.assertEqual(len(self.codec.ticket_store), 0)

    @defer.inlineCallbacks
    def test_credentials(self):
        params = {
            'username': 'jane.smith',
            'password': 'password',
            'lt': 'LT-fake',
            'service': self.service}
        result = yield self.controllers.login(params, FakeRequest(method=b'POST'))
        self.assertTrue(self.ticketFrom(result).startswith('ST-'))
        self.assertEqual([u.username for u in self.session.established], ['jane.smith'])

    @defer.inlineCallbacks
    def test_credentials_without_service(self):
        params = {'username': 'jane.smith', 'password': 'password', 'lt': 'LT-fake'}
        result = yield self.controllers.login(params, FakeRequest(method=b'POST'))
        self.assertEqual(result, Redirect(self.config.home_url))
        self.assertEqual(len(self.session.established), 1)

    @defer.inlineCallbacks
    def test_bad_password(self):
        params = {
            'username': 'jane.smith',
            'password': 'wrong',
            'lt': 'LT-fake',
            'service': self.service}
        result = yield self.controllers.login(params, FakeRequest(method=b'POST'))
        self.assertEqual(result, Redirect('/loginForm?service=' + self.service))
        self.assertEqual(self.session.established, [])

    @defer.inlineCallbacks
    def test_bad_login_ticket(self):
        self.session.valid_lt = False
        params = {
            'username': 'jane.smith',
            'password': 'password',
            'lt': 'LT-fake',
            'service': self.service}
        result = yield self.controllers.login(params, FakeRequest(method=b'POST'))
        self.assertEqual(result, Redirect('/loginForm?service=' + self.service))
        self.assertEqual(self.session.established, [])

    @defer.inlineCallbacks
    def test_redirect_filter(self):
        seen = []

        def redirect_filter(url, ticket):
            seen.append(ticket.type)
            return defer.succeed(url + '&filtered=1')

        self.controllers = self.makeControllers(redirect_filter=redirect_filter)
        yield self.loginAs()
        result = yield self.controllers.login({'service': self.service}, FakeRequest())
        self.assertTrue(result.url.endswith('&filtered=1'))
        self.assertEqual(seen, ['ST'])

    @defer.inlineCallbacks
    def test_internal_error(self):
        yield self.loginAs()
        self.codec.issue = lambda *args, **kwds: defer.fail(RuntimeError("boom"))
        response = yield self.controllers.login({'service': self.service}, FakeRequest())
        self.assertEqual(response.code, 500)
        self.assertIn('Internal Error', response.body)
        self.assertEqual(len(self.flushLoggedErrors(RuntimeError)), 1)

    @defer.inlineCallbacks
    def test_login_form(self):
        response = yield self.controllers.loginForm(
            {'service': self.service + '?a=1&b="2"', 'failed': '1'}, FakeRequest())
        self.assertEqual(response.code, 200)
        self.assertIn('name="lt" value="LT-fake"', response.body)
        self.assertIn('could not be verified', response.body)
        self.assertIn('?a=1&amp;b=&quot;2&quot;', response.body)


class LogoutTest(ControllersTestCase):

    @defer.inlineCallbacks
    def test_logout(self):
        yield self.loginAs()
        result = yield self.controllers.logout({}, FakeRequest())
        self.assertEqual(result, Redirect(self.config.home_url))
        self.assertEqual(self.session.destroyed, 1)
        self.assertIsNone(self.session.principal)

    @defer.inlineCallbacks
    def test_logout_service(self):
        result = yield self.controllers.logout({'service': self.service}, FakeRequest())
        self.assertEqual(result, Redirect(self.service))


class ValidateTest(ControllersTestCase):

    @defer.inlineCallbacks
    def test_single_use(self):
        ticket = yield self.getServiceTicket()
        params = {'ticket': ticket, 'service': self.service}
        response = yield self.controllers.validate(params, FakeRequest())
        self.assertEqual(response.body, 'yes\njane.smith\n')
        response = yield self.controllers.validate(params, FakeRequest())
        self.assertEqual(response.body, 'no\n\n')

    @defer.inlineCallbacks
    def test_failures(self):
        ticket = yield self.getServiceTicket()
        for params in [
                {'service': self.service},
                {'ticket': ticket},
                {'ticket': 'ST-garbage', 'service': self.service},
                {'ticket': ticket, 'service': 'http://evil.example.com/'}]:
            response = yield self.controllers.validate(params, FakeRequest())
            self.assertEqual(response.code, 200)
            self.assertEqual(response.body, 'no\n\n')

    @defer.inlineCallbacks
    def test_rejects_proxy_ticket(self):
        user = yield self.loginAs()
        ticket, wire = yield self.codec.issue('PT', user, self.service)
        response = yield self.controllers.validate(
            {'ticket': wire, 'service': self.service}, FakeRequest())
        self.assertEqual(response.body, 'no\n\n')


class ServiceValidateTest(ControllersTestCase):

    @defer.inlineCallbacks
    def test_success(self):
        self.config.attributes = ['email', 'affiliation']
        ticket = yield self.getServiceTicket()
        response = yield self.controllers.serviceValidate(
            {'ticket': ticket, 'service': self.service}, FakeRequest())
        self.assertEqual(response.content_type, 'text/xml; charset=utf-8')
        success = self.parseSuccess(response)
        user = success.getElementsByTagName('cas:user')[0]
        self.assertEqual(element_text(user), 'jane.smith')
        attributes = success.getElementsByTagName('cas:attributes')[0]
        names = [
            n.tagName for n in attributes.childNodes
            if n.nodeType == n.ELEMENT_NODE]
        self.assertEqual(names, ['cas:email', 'cas:affiliation'])
        affiliation = attributes.getElementsByTagName('cas:affiliation')[0]
        self.assertEqual(element_text(affiliation), 'staff,faculty')

    @defer.inlineCallbacks
    def test_no_attributes(self):
        ticket = yield self.getServiceTicket()
        response = yield self.controllers.serviceValidate(
            {'ticket': ticket, 'service': self.service}, FakeRequest())
        success = self.parseSuccess(response)
        self.assertEqual(success.getElementsByTagName('cas:attributes'), [])

    @defer.inlineCallbacks
    def test_reuse(self):
        ticket = yield self.getServiceTicket()
        params = {'ticket': ticket, 'service': self.service}
        yield self.controllers.serviceValidate(params, FakeRequest())
        response = yield self.controllers.serviceValidate(params, FakeRequest())
        self.assertFailureCode(response, 'INVALID_TICKET')

    @defer.inlineCallbacks
    def test_expired(self):
        ticket = yield self.getServiceTicket()
        self.clock.advance(self.config.expiration)
        response = yield self.controllers.serviceValidate(
            {'ticket': ticket, 'service': self.service}, FakeRequest())
        self.assertFailureCode(response, 'INVALID_TICKET')

    @defer.inlineCallbacks
    def test_reuse_until_expiry(self):
        self.codec.ticket_store.allow_reuse = True
        ticket = yield self.getServiceTicket()
        params = {'ticket': ticket, 'service': self.service}
        for i in range(2):
            response = yield self.controllers.serviceValidate(params, FakeRequest())
            self.parseSuccess(response)
        self.clock.advance(self.config.expiration)
        response = yield self.controllers.serviceValidate(params, FakeRequest())
        self.assertFailureCode(response, 'INVALID_TICKET')

    @defer.inlineCallbacks
    def test_wrong_service(self):
        ticket = yield self.getServiceTicket()
        response = yield self.controllers.serviceValidate(
            {'ticket': ticket, 'service': 'http://evil.example.com/'}, FakeRequest())
        self.assertFailureCode(response, 'INVALID_SERVICE')

    @defer.inlineCallbacks
    def test_missing_parameters(self):
        response = yield self.controllers.serviceValidate(
            {'service': self.service}, FakeRequest())
        self.assertFailureCode(response, 'INVALID_REQUEST')

    @defer.inlineCallbacks
    def test_proxy_ticket(self):
        user = yield self.loginAs()
        ticket, wire = yield self.codec.issue('PT', user, self.service)
        params = {'ticket': wire, 'service': self.service}
        response = yield self.controllers.serviceValidate(params, FakeRequest())
        self.assertFailureCode(response, 'INVALID_TICKET')
        response = yield self.controllers.proxyValidate(params, FakeRequest())
        self.parseSuccess(response)

    @defer.inlineCallbacks
    def test_store_failure(self):
        ticket = yield self.getServiceTicket()
        self.codec.ticket_store.consume = lambda key: defer.fail(RuntimeError("down"))
        response = yield self.controllers.serviceValidate(
            {'ticket': ticket, 'service': self.service}, FakeRequest())
        self.assertFailureCode(response, 'INTERNAL_ERROR')
        self.flushLoggedErrors()


class ProxyTest(ControllersTestCase):

    @defer.inlineCallbacks
    def getPGT(self):
        ticket = yield self.getServiceTicket()
        response = yield self.controllers.serviceValidate(
            {'ticket': ticket, 'service': self.service, 'pgtUrl': self.pgturl},
            FakeRequest())
        success = self.parseSuccess(response)
        iou = element_text(success.getElementsByTagName('cas:proxyGrantingTicket')[0])
        return iou

    @defer.inlineCallbacks
    def test_pgt_callback(self):
        iou = yield self.getPGT()
        self.assertTrue(iou.startswith('PGTIOU-'))
        self.assertEqual(len(self.callbacks), 2)
        self.assertEqual(self.callbacks[0], (self.pgturl, None))
        url, params = self.callbacks[1]
        self.assertEqual(url, self.pgturl)
        self.assertEqual(params['pgtIou'], iou)
        self.assertTrue(params['pgtId'].startswith('PGT-'))

    @defer.inlineCallbacks
    def test_proxy(self):
        yield self.getPGT()
        pgt = self.callbacks[1][1]['pgtId']
        response = yield self.controllers.proxy(
            {'pgt': pgt, 'targetService': self.target}, FakeRequest())
        root, children = parse_cas_response(response.body)
        self.assertEqual(children[0].tagName, 'cas:proxySuccess')
        pt = element_text(children[0].getElementsByTagName('cas:proxyTicket')[0])
        self.assertTrue(pt.startswith('PT-'))
        response = yield self.controllers.proxyValidate(
            {'ticket': pt, 'service': self.target}, FakeRequest())
        success = self.parseSuccess(response)
        user = success.getElementsByTagName('cas:user')[0]
        self.assertEqual(element_text(user), 'jane.smith')

    def proxyList(self, success):
        return [
            element_text(n) for n in success.getElementsByTagName('cas:proxy')]

    @defer.inlineCallbacks
    def test_proxy_chain(self):
        yield self.getPGT()
        pgt = self.callbacks[1][1]['pgtId']
        response = yield self.controllers.proxy(
            {'pgt': pgt, 'targetService': self.target}, FakeRequest())
        root, children = parse_cas_response(response.body)
        pt = element_text(children[0].getElementsByTagName('cas:proxyTicket')[0])
        response = yield self.controllers.proxyValidate(
            {'ticket': pt, 'service': self.target}, FakeRequest())
        success = self.parseSuccess(response)
        self.assertEqual(self.proxyList(success), [self.pgturl])

    @defer.inlineCallbacks
    def test_proxy_chain_two_levels(self):
        """
        A proxy that obtains its own PGT from a proxy ticket extends the
        chain, most recent proxy first.
        """
        pgturl2 = "https://backend.example.net/pgtcallback"
        yield self.getPGT()
        pgt = self.callbacks[1][1]['pgtId']
        response = yield self.controllers.proxy(
            {'pgt': pgt, 'targetService': self.target}, FakeRequest())
        root, children = parse_cas_response(response.body)
        pt = element_text(children[0].getElementsByTagName('cas:proxyTicket')[0])
        response = yield self.controllers.proxyValidate(
            {'ticket': pt, 'service': self.target, 'pgtUrl': pgturl2},
            FakeRequest())
        self.parseSuccess(response)
        pgt2 = self.callbacks[3][1]['pgtId']
        response = yield self.controllers.proxy(
            {'pgt': pgt2, 'targetService': self.service}, FakeRequest())
        root, children = parse_cas_response(response.body)
        pt2 = element_text(children[0].getElementsByTagName('cas:proxyTicket')[0])
        response = yield self.controllers.proxyValidate(
            {'ticket': pt2, 'service': self.service}, FakeRequest())
        success = self.parseSuccess(response)
        self.assertEqual(self.proxyList(success), [pgturl2, self.pgturl])

    @defer.inlineCallbacks
    def test_service_ticket_has_no_proxies(self):
        ticket = yield self.getServiceTicket()
        response = yield self.controllers.proxyValidate(
            {'ticket': ticket, 'service': self.service}, FakeRequest())
        success = self.parseSuccess(response)
        self.assertEqual(success.getElementsByTagName('cas:proxies'), [])

    @defer.inlineCallbacks
    def test_pgt_single_use(self):
        yield self.getPGT()
        pgt = self.callbacks[1][1]['pgtId']
        params = {'pgt': pgt, 'targetService': self.target}
        yield self.controllers.proxy(params, FakeRequest())
        response = yield self.controllers.proxy(params, FakeRequest())
        self.assertFailureCode(response, 'BAD_PGT', 'cas:proxyFailure')

    @defer.inlineCallbacks
    def test_bad_pgt(self):
        response = yield self.controllers.proxy(
            {'pgt': 'PGT-garbage', 'targetService': self.target}, FakeRequest())
        self.assertFailureCode(response, 'BAD_PGT', 'cas:proxyFailure')

    @defer.inlineCallbacks
    def test_service_ticket_as_pgt(self):
        ticket = yield self.getServiceTicket()
        response = yield self.controllers.proxy(
            {'pgt': ticket, 'targetService': self.target}, FakeRequest())
        self.assertFailureCode(response, 'BAD_PGT', 'cas:proxyFailure')

    @defer.inlineCallbacks
    def test_missing_target(self):
        yield self.getPGT()
        pgt = self.callbacks[1][1]['pgtId']
        response = yield self.controllers.proxy({'pgt': pgt}, FakeRequest())
        self.assertFailureCode(response, 'INVALID_REQUEST', 'cas:proxyFailure')

    @defer.inlineCallbacks
    def test_pgturl_not_https(self):
        ticket = yield self.getServiceTicket()
        response = yield self.controllers.serviceValidate(
            {'ticket': ticket,
             'service': self.service,
             'pgtUrl': 'http://proxy.example.net/pgtcallback'},
            FakeRequest())
        self.assertFailureCode(response, 'INVALID_PROXY_CALLBACK')
        self.assertEqual(self.callbacks, [])

    @defer.inlineCallbacks
    def test_pgturl_http_allowed(self):
        self.config.validate_pgturl = False
        ticket = yield self.getServiceTicket()
        response = yield self.controllers.serviceValidate(
            {'ticket': ticket,
             'service': self.service,
             'pgtUrl': 'http://proxy.example.net/pgtcallback'},
            FakeRequest())
        self.parseSuccess(response)

    @defer.inlineCallbacks
    def test_pgturl_unreachable(self):
        self.httpClient.get.side_effect = lambda url, **kwds: defer.fail(
            ConnectionRefusedError("refused"))
        ticket = yield self.getServiceTicket()
        response = yield self.controllers.serviceValidate(
            {'ticket': ticket, 'service': self.service, 'pgtUrl': self.pgturl},
            FakeRequest())
        self.assertFailureCode(response, 'INVALID_PROXY_CALLBACK')
        self.assertEqual(len(self.codec.ticket_store), 0)

    @defer.inlineCallbacks
    def test_pgt_delivery_failed(self):
        """
        A PGT the callback did not accept can never be used.
        """
        def simulate(url, params=None, timeout=None):
            self.callbacks.append((url, params))
            if params is None:
                return defer.succeed(fake_response(200))
            return defer.succeed(fake_response(500, 'Internal Server Error'))

        self.httpClient.get.side_effect = simulate
        ticket = yield self.getServiceTicket()
        response = yield self.controllers.serviceValidate(
            {'ticket': ticket, 'service': self.service, 'pgtUrl': self.pgturl},
            FakeRequest())
        self.assertFailureCode(response, 'INVALID_PROXY_CALLBACK')
        pgt = self.callbacks[1][1]['pgtId']
        response = yield self.controllers.proxy(
            {'pgt': pgt, 'targetService': self.target}, FakeRequest())
        self.assertFailureCode(response, 'BAD_PGT', 'cas:proxyFailure')
