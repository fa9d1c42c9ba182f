# Standard library.
import sys
# Application modules
from txcasticket.interface import IRealmFactory, ITicketStoreFactory
from txcasticket.server import ServerApp
import txcasticket.settings
# External modules
from twisted.application.service import Service
from twisted.cred.strcred import ICheckerFactory
from twisted.internet.endpoints import serverFromString
from twisted.plugin import getPlugins
from twisted.web.server import Site


def split_tag_args(tag_args):
    """
    Split a `tag:arg1=v1:arg2=v2` plugin option into (tag, argstring).
    """
    parts = tag_args.split(':')
    return parts[0], ':'.join(parts[1:])


class CASService(Service):
    """
    Service for CAS server
    """
    reactor = None
    _listeningPort = None

    def __init__(
                self,
                endpoint_s,
                checkers=None,
                realm=None,
                ticket_store=None,
                config=None):
        if self.reactor is None:
            from twisted.internet import reactor
            self.reactor = reactor
        self.endpoint_s = endpoint_s
        # Load the config.
        scp = txcasticket.settings.load_settings('cas', syspath='/etc/cas', defaults={
                'PLUGINS': {
                    'cred_checker': 'file:./cas_users.passwd',
                    'realm': 'basic_realm',
                    'ticket_store': 'memory_ticket_store'}})
        if config is None:
            try:
                config = txcasticket.settings.CASConfig.fromSettings(scp)
            except ValueError as ex:
                sys.stderr.write("[ERROR] Invalid [CAS] setting: %s\n" % ex)
                sys.exit(1)
            if not scp.has_option('CAS', 'secret'):
                sys.stderr.write(
                    "[CONFIG] No site secret configured.  "
                    "Tickets will not survive a restart.\n")
        # Choose plugin that implements ITicketStore.
        if ticket_store is None:
            tag, args = split_tag_args(scp.get('PLUGINS', 'ticket_store'))
            factory = txcasticket.settings.get_plugin_factory(tag, ITicketStoreFactory)
            if factory is None:
                sys.stderr.write("[ERROR] Ticket store type '%s' is not available.\n" % tag)
                sys.exit(1)
            ticket_store = factory.generateTicketStore(args)
        assert ticket_store is not None, "Ticket store has not been configured!"
        sys.stderr.write("[CONFIG] Ticket store: %s\n" % ticket_store.__class__.__name__)
        # Choose plugin(s) that implement ICredentialChecker
        if checkers is None or len(checkers) == 0:
            checkers = []
            for tag_arg in scp.get('PLUGINS', 'cred_checker').split(','):
                tag, args = split_tag_args(tag_arg.strip())
                for factory in getPlugins(ICheckerFactory):
                    if factory.authType == tag:
                        checkers.append(factory.generateChecker(args))
            if len(checkers) == 0:
                sys.stderr.write("[ERROR] No valid credential checker was configured.\n")
                sys.exit(1)
        for checker in checkers:
            sys.stderr.write("[CONFIG] Credential Checker: %s\n" % checker.__class__.__name__)
        # Choose the plugin that implements IRealm.
        if realm is None:
            tag, args = split_tag_args(scp.get('PLUGINS', 'realm'))
            factory = txcasticket.settings.get_plugin_factory(tag, IRealmFactory)
            if factory is None:
                sys.stderr.write("[ERROR] Realm type '%s' is not available.\n" % tag)
                sys.exit(1)
            realm = factory.generateRealm(args)
        assert realm is not None, "User Realm has not been configured!"
        sys.stderr.write("[CONFIG] User Realm: %s\n" % realm.__class__.__name__)
        if config.validate_pgturl:
            sys.stderr.write("[CONFIG] pgtUrls will be validated.\n")
        else:
            sys.stderr.write("[CONFIG] pgtUrls will *NOT* be validated.\n")
        # TGC uses "secure"?
        if endpoint_s.startswith("ssl:") or endpoint_s.startswith("tls:"):
            config.require_ssl = True
        if config.require_ssl:
            sys.stderr.write("[CONFIG] Requests must arrive over SSL.\n")
        # Create the application.
        app = ServerApp(config, ticket_store, realm, checkers, clock=self.reactor)
        self.app = app
        root = app.app.resource()
        self.site = Site(root)

    def startService(self):
        sys.stderr.write("[CONFIG] Endpoint string: %s\n" % self.endpoint_s)
        endpoint = serverFromString(self.reactor, self.endpoint_s)
        d = endpoint.listen(self.site)
        d.addCallback(self.recordListeningPort)

    def recordListeningPort(self, listeningPort):
        self._listeningPort = listeningPort

    def stopService(self):
        if self._listeningPort is not None:
            self._listeningPort.stopListening()
