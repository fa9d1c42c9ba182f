# Standard library
import datetime
import json
import sys
from textwrap import dedent

# Application modules
from txcasticket.exceptions import CouchDBError
import txcasticket.http
from txcasticket.interface import ITicketStore, ITicketStoreFactory
from txcasticket.settings import get_bool, export_settings_to_dict, load_settings
import txcasticket.utils
from txcasticket.utils import http_status_filter

# External modules
from dateutil.parser import parse as parse_date
import treq
from twisted.internet import defer, reactor
from twisted.plugin import IPlugin
from twisted.python import log
from twisted.web.http_headers import Headers
from zope.interface import implementer


EXPIRES_FORMAT = '%Y-%m-%dT%H:%M:%S.%fZ'


def format_expires(timestamp):
    """
    Format an epoch timestamp the way expirations are stored in CouchDB.
    These strings sort in time order.
    """
    dt = datetime.datetime.fromtimestamp(timestamp, tz=datetime.timezone.utc)
    return dt.strftime(EXPIRES_FORMAT)

def parse_expires(value):
    """
    Parse a stored expiration back into an epoch timestamp.
    """
    dt = parse_date(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt.timestamp()

def design_document():
    """
    The `views` design document the ticket store queries.
    """
    return {
        'language': 'javascript',
        'views': {
            "get_by_expires": {
                "map": "function(doc) {\n    if (doc['expires']) {\n"
                       "        emit(doc['expires'], doc['_rev']);\n    }\n}"
            },
        },
    }


@implementer(IPlugin, ITicketStoreFactory)
class CouchDBTicketStoreFactory(object):

    tag = "couchdb_ticket_store"

    opt_help = dedent('''\
            A ticket store that tracks unused CAS tickets in an external
            CouchDB database.
            Any tickets in the store when the CAS process is stopped
            are retained when it is restarted.
            Valid options include:

            - couch_host
            - couch_port
            - couch_db
            - couch_user
            - couch_passwd
            - use_https
            - verify_cert
            - poll_expired
            - allow_reuse
            ''')

    opt_usage = '''A colon-separated key=value list.'''

    def generateTicketStore(self, argstring=""):
        scp = load_settings('cas', syspath='/etc/cas')
        settings = export_settings_to_dict(scp)
        ts_settings = settings.get('CouchDB', {})
        settings_xlate = {
                'host': 'couch_host',
                'port': 'couch_port',
                'db': 'couch_db',
                'user': 'couch_user',
                'passwd': 'couch_passwd',
                'https': 'use_https',
                'debug': '_debug',
            }
        temp = {}
        for k, v in ts_settings.items():
            k = settings_xlate.get(k, k)
            temp[k] = v
        ts_settings = temp
        del temp
        ts_settings.update(txcasticket.utils.parse_argstring(argstring))
        missing = txcasticket.utils.get_missing_args(
                    CouchDBTicketStore.__init__, ts_settings, ['self'])
        if len(missing) > 0:
            sys.stderr.write(
                "[ERROR][CouchDBTicketStore] "
                "Missing the following settings: %s" % ', '.join(missing))
            sys.stderr.write('\n')
            sys.exit(1)
        props = {}
        if 'poll_expired' in ts_settings:
            props['poll_expired'] = int(ts_settings['poll_expired'])
        if 'allow_reuse' in ts_settings:
            props['allow_reuse'] = get_bool(ts_settings['allow_reuse'])
        txcasticket.utils.filter_args(CouchDBTicketStore.__init__, ts_settings, ['self'])
        if 'couch_port' in ts_settings:
            ts_settings['couch_port'] = int(ts_settings['couch_port'])
        for key in ('use_https', 'verify_cert', '_debug'):
            if key in ts_settings:
                ts_settings[key] = get_bool(ts_settings[key])
        obj = CouchDBTicketStore(**ts_settings)
        for prop, value in props.items():
            setattr(obj, prop, value)
        buf = ["[CONFIG][CouchDBTicketStore] Settings:"]
        d = dict(ts_settings)
        d.update(props)
        for k in sorted(d.keys()):
            v = d[k]
            if k == 'couch_passwd':
                v = '*******'
            buf.append(" - %s: %s" % (k, v))
        sys.stderr.write('\n'.join(buf))
        sys.stderr.write('\n')
        return obj


@implementer(ITicketStore)
class CouchDBTicketStore(object):
    """
    A ticket store that uses an external CouchDB.

    Each unused ticket is one document with id `ticket-<key>`.  Consuming a
    ticket deletes the document at the revision that was read, so when two
    consumers race only one delete succeeds and the other gets a 409 or 404.
    """

    allow_reuse = False
    poll_expired = 60 * 1

    def __init__(self, couch_host, couch_port, couch_db,
                couch_user, couch_passwd, use_https=True,
                reactor=reactor, _debug=False, verify_cert=True):
        self.reactor = reactor
        self._debug = _debug
        self._couch_host = couch_host
        self._couch_port = couch_port
        self._couch_db = couch_db
        self._couch_user = couch_user
        self._couch_passwd = couch_passwd
        if verify_cert:
            self.reqlib = treq
        else:
            self.reqlib = txcasticket.http.createNonVerifyingHTTPClient(reactor)
        if use_https:
            self._scheme = 'https://'
        else:
            self._scheme = 'http://'
        self._cleaner = reactor.callLater(self.poll_expired, self._clean_expired)

    def debug(self, msg):
        if self._debug:
            log.msg(msg)

    def _url(self, path=""):
        url = '''%(scheme)s%(host)s:%(port)s/%(db)s''' % {
            'scheme': self._scheme,
            'host': self._couch_host,
            'port': self._couch_port,
            'db': self._couch_db}
        if path != "":
            url = url + '/' + path
        return url

    def _docid(self, key):
        return 'ticket-%s' % key

    def _auth(self):
        return (self._couch_user, self._couch_passwd)

    @defer.inlineCallbacks
    def _clean_expired(self):
        """
        Delete ticket documents whose expiration has passed.
        """
        try:
            url = self._url('_design/views/_view/get_by_expires')
            params = {
                    'endkey': json.dumps(format_expires(self.reactor.seconds())),
                    }
            self.debug("[DEBUG][CouchDB] _clean_expired(), url: %s" % url)
            self.debug("[DEBUG][CouchDB] _clean_expired(), params: %s" % str(params))
            response = yield self.reqlib.get(url,
                        params=params,
                        headers=Headers({'Accept': ['application/json']}),
                        auth=self._auth())
            response = yield http_status_filter(response, [(200, 200)], CouchDBError)
            doc = yield treq.json_content(response)
            for row in doc['rows']:
                try:
                    yield self._delete_doc(row['id'], row['value'])
                except CouchDBError as ex:
                    log.msg("CouchDB error while attempting to delete expired tickets.")
                    log.err(ex)
        except Exception as ex:
            log.err(ex)
        self._cleaner = self.reactor.callLater(self.poll_expired, self._clean_expired)

    @defer.inlineCallbacks
    def _fetch_doc(self, key):
        """
        Fetch the document for `key`.  Fires with None if there is none.
        """
        url = self._url(self._docid(key))
        self.debug("[DEBUG][CouchDB] _fetch_doc(), url: %s" % url)
        response = yield self.reqlib.get(url,
                    headers=Headers({'Accept': ['application/json']}),
                    auth=self._auth())
        if response.code == 404:
            yield treq.content(response)
            return None
        response = yield http_status_filter(response, [(200, 200)], CouchDBError)
        doc = yield treq.json_content(response)
        doc['expires'] = parse_expires(doc['expires'])
        return doc

    @defer.inlineCallbacks
    def _delete_doc(self, docid, rev):
        """
        Delete a document at revision `rev`.
        Fires with True if this call deleted it, False if it was already
        gone or was changed in between.
        """
        url = self._url(docid)
        params = {'rev': rev}
        self.debug('[DEBUG][CouchDB] _delete_doc(), url: %s' % url)
        self.debug('[DEBUG][CouchDB] _delete_doc(), params: %s' % str(params))
        response = yield self.reqlib.delete(
                            url,
                            params=params,
                            auth=self._auth(),
                            headers=Headers({'Accept': ['application/json']}))
        if response.code in (404, 409):
            yield treq.content(response)
            return False
        response = yield http_status_filter(response, [(200, 202)], CouchDBError)
        yield treq.content(response)
        return True

    def markUnused(self, key, ticket, ttl, proxies=None):
        """
        Create the document for a fresh ticket.
        """
        url = self._url(self._docid(key))
        data = {
            'ticket': ticket,
            'expires': format_expires(self.reactor.seconds() + ttl),
            'proxies': list(proxies or []),
        }
        doc = json.dumps(data)
        self.debug("[DEBUG][CouchDB] markUnused(): url: %s" % url)
        self.debug("[DEBUG][CouchDB] markUnused(): doc: %s" % doc)
        d = self.reqlib.put(url, data=doc.encode('utf-8'), auth=self._auth(),
                        headers=Headers({
                            'Accept': ['application/json'],
                            'Content-Type': ['application/json']}))
        d.addCallback(http_status_filter, [(201, 202)], CouchDBError)
        d.addCallback(treq.content)
        d.addCallback(lambda _: None)
        return d

    @defer.inlineCallbacks
    def markUsed(self, key):
        doc = yield self._fetch_doc(key)
        if doc is not None:
            yield self._delete_doc(doc['_id'], doc['_rev'])

    @defer.inlineCallbacks
    def isUsed(self, key):
        if self.allow_reuse:
            return False
        doc = yield self._fetch_doc(key)
        if doc is None:
            return True
        return doc['expires'] <= self.reactor.seconds()

    @defer.inlineCallbacks
    def proxies(self, key):
        doc = yield self._fetch_doc(key)
        if doc is None or doc['expires'] <= self.reactor.seconds():
            return []
        return doc.get('proxies') or []

    @defer.inlineCallbacks
    def consume(self, key):
        """
        Fetch the current revision and delete exactly that revision.
        """
        if self.allow_reuse:
            return True
        doc = yield self._fetch_doc(key)
        if doc is None:
            return False
        deleted = yield self._delete_doc(doc['_id'], doc['_rev'])
        if not deleted:
            self.debug("[DEBUG][CouchDB] consume(): lost race for key '%s'." % key)
            return False
        return doc['expires'] > self.reactor.seconds()
