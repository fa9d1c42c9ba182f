# Standard library
import sys
from textwrap import dedent

# Application modules
from txcasticket.interface import ITicketStore, ITicketStoreFactory
import txcasticket.settings
import txcasticket.utils

# External modules
from twisted.internet import defer, reactor
from twisted.plugin import IPlugin
from twisted.python import log
from zope.interface import implementer


@implementer(IPlugin, ITicketStoreFactory)
class InMemoryTicketStoreFactory(object):

    tag = "memory_ticket_store"

    opt_help = dedent('''\
            A ticket store that tracks unused CAS tickets in local
            memory.  It is easy to configure and quick to query.
            It is constained to a single process, however, so no
            high availability.  Also, any unused tickets are lost
            when the CAS process is stopped.
            Valid options include:

            - allow_reuse
            - debug
            ''')

    opt_usage = '''A colon-separated key=value list.'''

    def generateTicketStore(self, argstring=""):
        """
        """
        scp = txcasticket.settings.load_settings('cas', syspath='/etc/cas')
        settings = txcasticket.settings.export_settings_to_dict(scp)
        ts_settings = settings.get('InMemoryTicketStore', {})
        ts_settings.update(txcasticket.utils.parse_argstring(argstring))
        obj = InMemoryTicketStore(
            _debug=txcasticket.settings.get_bool(ts_settings.get('debug', False)))
        if 'allow_reuse' in ts_settings:
            obj.allow_reuse = txcasticket.settings.get_bool(ts_settings['allow_reuse'])
        buf = ["[CONFIG][InMemoryTicketStore] Settings:"]
        for k in sorted(ts_settings.keys()):
            buf.append(" - %s: %s" % (k, ts_settings[k]))
        sys.stderr.write('\n'.join(buf))
        sys.stderr.write('\n')
        return obj


@implementer(ITicketStore)
class InMemoryTicketStore(object):
    """
    A ticket store that exists entirely in system memory.

    Entries are removed by a delayed call when their TTL runs out, and an
    entry whose expiration has passed is treated as absent even if the
    delayed call has not fired yet.
    """

    allow_reuse = False

    def __init__(self, reactor=reactor, _debug=False):
        self.reactor = reactor
        self._tickets = {}
        self._delays = {}
        self._debug = _debug

    def debug(self, msg):
        if self._debug:
            log.msg(msg)

    def __len__(self):
        return len(self._tickets)

    def markUnused(self, key, ticket, ttl, proxies=None):
        """
        Record a fresh ticket under `key` for `ttl` seconds.
        """
        self._forget(key)
        expires = self.reactor.seconds() + ttl
        self._tickets[key] = (ticket, expires, list(proxies or []))
        self._delays[key] = self.reactor.callLater(ttl, self.expireTicket, key)
        self.debug("Added ticket key '%s' (ttl %s)." % (key, ttl))
        return defer.succeed(None)

    def expireTicket(self, key):
        """
        This function should only be called when a ticket is expired via
        a timeout.
        """
        self._delays.pop(key, None)
        if self._tickets.pop(key, None) is not None:
            self.debug("Expired ticket key '%s'." % key)

    def _forget(self, key):
        dc = self._delays.pop(key, None)
        if dc is not None and dc.active():
            dc.cancel()
        return self._tickets.pop(key, None)

    def _isFresh(self, key):
        try:
            ticket, expires, proxies = self._tickets[key]
        except KeyError:
            return False
        return expires > self.reactor.seconds()

    def markUsed(self, key):
        """
        Forget the ticket recorded under `key`.
        """
        if self._forget(key) is not None:
            self.debug("Consumed ticket key '%s'." % key)
        return defer.succeed(None)

    def isUsed(self, key):
        if self.allow_reuse:
            return defer.succeed(False)
        return defer.succeed(not self._isFresh(key))

    def proxies(self, key):
        if not self._isFresh(key):
            return defer.succeed([])
        return defer.succeed(list(self._tickets[key][2]))

    def consume(self, key):
        """
        Check and forget in one step.  Nothing else runs on the reactor
        between the check and the delete.
        """
        fresh = self._isFresh(key)
        if self.allow_reuse:
            return defer.succeed(True)
        self._forget(key)
        if fresh:
            self.debug("Consumed ticket key '%s'." % key)
        return defer.succeed(fresh)
