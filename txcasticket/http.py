# External modules
from treq.client import HTTPClient
from twisted.internet.ssl import CertificateOptions
from twisted.web.client import Agent
from twisted.web.iweb import IPolicyForHTTPS
from zope.interface import implementer


@implementer(IPolicyForHTTPS)
class NonVerifyingContextFactory(object):
    """
    Context factory does *not* verify SSL cert.
    """
    def creatorForNetloc(self, hostname, port):
        return CertificateOptions(verify=False)

def normalizeDict_(d):
    if d is None:
        d = {}
    else:
        d = dict(d)
    return d

def createNonVerifyingHTTPClient(reactor, agent_kwds=None, **kwds):
    agent_kwds = normalizeDict_(agent_kwds)
    agent_kwds['contextFactory'] = NonVerifyingContextFactory()
    return HTTPClient(Agent(reactor, **agent_kwds), **kwds)
