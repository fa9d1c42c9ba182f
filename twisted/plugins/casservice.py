# Standard library
import sys

# Application modules
from txcasticket.interface import IRealmFactory, ITicketStoreFactory
from txcasticket.service import CASService
import txcasticket.settings
import txcasticket.utils

# External modules
from twisted.application.service import IServiceMaker
from twisted.cred import credentials, strcred
from twisted.plugin import getPlugins, IPlugin
from twisted.python import usage
from zope.interface import implementer


class Options(usage.Options, strcred.AuthOptionMixin):
    # This part is optional; it tells AuthOptionMixin what
    # kinds of credential interfaces the user can give us.
    supportedInterfaces = (credentials.IUsernamePassword,)

    optFlags = [
            ["ssl", "s", "Use SSL"],
            ["help-realms", None, "List user realm plugins available."],
            ["help-ticket-stores", None, "List ticket store plugins available."],
        ]

    optParameters = [
                        ["port", "p", 9800, "The port number to listen on.", int],
                        ["cert-key", "c", None, "An x509 certificate file (PEM format)."],
                        ["private-key", "k", None, "An x509 private key (PEM format)."],
                        ["realm", "r", None, "User realm plugin to use."],
                        ["help-realm", None, None, "Help for a specific realm plugin."],
                        ["ticket-store", "t", None, "Ticket store plugin to use."],
                        ["help-ticket-store", None, None, "Help for a specific ticket store plugin."],
                    ]


def show_plugin_list(title, iface):
    sys.stdout.write("%s\n" % title)
    factories = list(getPlugins(iface))
    txcasticket.utils.format_plugin_help_list(factories, sys.stdout)
    sys.exit(0)

def show_plugin_help(kind, tag, iface):
    factory = txcasticket.settings.get_plugin_factory(tag, iface)
    if factory is None:
        sys.stderr.write("Unknown %s plugin '%s'.\n" % (kind, tag))
        sys.exit(1)
    sys.stderr.write(factory.opt_help)
    sys.stderr.write('\n')
    sys.exit(0)

def make_plugin(kind, arg, iface, method):
    """
    Build the plugin selected by a `tag:args` option value.
    """
    if arg is None:
        return None
    parts = arg.split(':')
    tag = parts[0]
    argstr = ':'.join(parts[1:])
    factory = txcasticket.settings.get_plugin_factory(tag, iface)
    if factory is None:
        sys.stderr.write("%s type '%s' is not available.\n" % (kind, tag))
        sys.exit(1)
    return getattr(factory, method)(argstr)


@implementer(IServiceMaker, IPlugin)
class MyServiceMaker(object):
    tapname = "cas"
    description = "Central Authentication Service (CAS)."
    options = Options

    def makeService(self, options):
        """
        Construct the CAS service from the command line options.
        """
        # Endpoint
        parts = []
        if options["ssl"]:
            parts.append("ssl")
        else:
            parts.append("tcp")
        parts.append(str(options["port"]))
        certKey = options['cert-key']
        if certKey is not None:
            parts.append('certKey=%s' % certKey)
        privateKey = options['private-key']
        if privateKey is not None:
            parts.append('privateKey=%s' % privateKey)
        endpoint = ':'.join(parts)
        checkers = options.get("credCheckers", None)

        # Realm
        if options['help-realms']:
            show_plugin_list("Available Realm Plugins", IRealmFactory)
        if options['help-realm'] is not None:
            show_plugin_help("realm", options['help-realm'], IRealmFactory)
        realm = make_plugin(
            "Realm", options['realm'], IRealmFactory, 'generateRealm')

        # Ticket Store
        if options['help-ticket-stores']:
            show_plugin_list("Available Ticket Store Plugins", ITicketStoreFactory)
        if options['help-ticket-store'] is not None:
            show_plugin_help(
                "ticket store", options['help-ticket-store'], ITicketStoreFactory)
        ticket_store = make_plugin(
            "Ticket store", options['ticket-store'],
            ITicketStoreFactory, 'generateTicketStore')

        # Create the service.
        return CASService(
                endpoint,
                checkers=checkers,
                realm=realm,
                ticket_store=ticket_store)


# Now construct an object which *provides* the relevant interfaces
# The name of this variable is irrelevant, as long as there is *some*
# name bound to a provider of IPlugin and IServiceMaker.

serviceMaker = MyServiceMaker()
