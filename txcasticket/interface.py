# External modules
from zope.interface import Interface, Attribute


class ICASUser(Interface):

    username = Attribute('String username')
    attribs = Attribute('List of (attribute, value) tuples.')
    credential = Attribute(
        'String fragment of the credential state of the user.  Mixed into '
        'the ticket key so changing credentials invalidates tickets.')

class IRealmFactory(Interface):

    tag = Attribute('String used to identify the plugin factory.')
    opt_help = Attribute('String description of the plugin.')
    opt_usage = Attribute('String describes how to provide arguments for factory.')

    def generateRealm(argstring=""):
        """
        Create an object that implements IRealm.
        """

class ITicketStoreFactory(Interface):

    tag = Attribute('String used to identify the plugin factory.')
    opt_help = Attribute('String description of the plugin.')
    opt_usage = Attribute('String describes how to provide arguments for factory.')

    def generateTicketStore(argstring=""):
        """
        Create an object that implements ITicketStore.
        """

class ITicketStore(Interface):

    allow_reuse = Attribute(
        'If True, tickets are never reported as used.  This weakens '
        'the single-use guarantee and only exists for unreliable stores.')

    def markUnused(key, ticket, ttl, proxies=None):
        """
        Record a fresh ticket.

        @type key: C{str}
        @param key: The derived ticket key.

        @type ticket: C{str}
        @param ticket: The serialized ticket.

        @type ttl: C{float}
        @param ttl: Seconds until the entry expires on its own.

        @type proxies: C{list}
        @param proxies: Proxy chain the ticket was issued through, most
            recent proxy first.

        @rtype: C{Deferred}
        """

    def markUsed(key):
        """
        Forget a ticket.  Forgetting an absent ticket is not an error.
        """

    def isUsed(key):
        """
        Returns a Deferred that fires with True if the ticket is absent
        (used or expired).
        """

    def proxies(key):
        """
        Returns a Deferred that fires with the proxy chain recorded for a
        fresh ticket, or an empty list.
        """

    def consume(key):
        """
        Atomically check and forget a ticket.
        Returns a Deferred that fires with True if this caller consumed a
        fresh ticket, False if it was already absent.
        """

class ISessionProvider(Interface):

    def currentPrincipal(request):
        """
        Returns a Deferred that fires with the ICASUser of the current
        single sign-on session or None.
        """

    def establish(request, user):
        """
        Start a single sign-on session for `user`.
        """

    def destroy(request):
        """
        End the current single sign-on session, if any.
        """

    def authenticate(username, password):
        """
        Returns a Deferred that fires with an ICASUser or fails with
        twisted.cred.error.UnauthorizedLogin.
        """

    def authURL(params):
        """
        Return the URL of the page that requests primary credentials.
        """

    def mkLoginTicket(service):
        """
        Create a login ticket (a nonce for the credential POST).
        """

    def verifyLoginTicket(ticket, service):
        """
        Returns a Deferred that fires with True if `ticket` is a fresh
        login ticket issued for `service`.  The ticket is consumed.
        """
