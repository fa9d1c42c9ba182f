# Standard library
import string
from xml.sax.saxutils import escape as xml_escape, quoteattr

# Application modules
from txcasticket.constants import CAS_NS


CONTENT_TYPE_XML = 'text/xml; charset=utf-8'
CONTENT_TYPE_TEXT = 'text/plain; charset=utf-8'


def sanitize_keyname(name):
    include = set(string.ascii_letters + string.digits + "-_.")
    s = ''.join(ch for ch in name if ch in include)
    while s != "" and s[0] not in string.ascii_letters + "_":
        s = s[1:]
    return s

def select_attributes(user, keys):
    """
    Pick the attributes of `user` named by `keys`, in `keys` order.
    Multi-valued attributes are joined with ','.
    Returns a list of (key, value) tuples.
    """
    attribs = []
    for key in keys:
        values = [str(v) for v in user.get(key)]
        if len(values) == 0:
            continue
        attribs.append((key, ','.join(values)))
    return attribs

def make_cas_attributes(attribs):
    """
    Create CAS attributes from a list of (key, value) tuples.

    E.g.:
    <cas:attributes>
         <cas:firstname>John</cas:firstname>
         <cas:lastname>Doe</cas:lastname>
         <cas:affiliation>staff,faculty</cas:affiliation>
   </cas:attributes>
    """
    if attribs is None or len(attribs) == 0:
        return ""
    parts = ["        <cas:attributes>"]
    for k, v in attribs:
        k = sanitize_keyname(k)
        if k == "":
            continue
        parts.append("            <cas:%s>%s</cas:%s>" % (k, xml_escape(v), k))
    parts.append("        </cas:attributes>")
    return '\n'.join(parts)

def make_proxies(proxies):
    if not proxies:
        return ""
    parts = ['''        <cas:proxies>''']
    for proxy in proxies:
        parts.append("""            <cas:proxy>%s</cas:proxy>""" % xml_escape(proxy))
    parts.append('''        </cas:proxies>''')
    return '\n'.join(parts)

def service_response(inner):
    """
    Wrap the single child element `inner` in a `cas:serviceResponse`.
    """
    return '\n'.join([
        '<cas:serviceResponse xmlns:cas="%s">' % CAS_NS,
        inner,
        '</cas:serviceResponse>',
        ''])

def failure_element(tag, code, message):
    return '    <cas:%(tag)s code=%(code)s>%(message)s</cas:%(tag)s>' % {
        'tag': tag,
        'code': quoteattr(code),
        'message': xml_escape(message)}


class ValidateResponse(object):
    """
    Body of a /serviceValidate or /proxyValidate response.

    Build one with L{success} or L{failure} and call L{render}.
    """

    content_type = CONTENT_TYPE_XML

    def __init__(self, username=None, attribs=None, iou=None, proxies=None,
                 code=None, message=None):
        self.username = username
        self.attribs = attribs
        self.iou = iou
        self.proxies = proxies
        self.code = code
        self.message = message

    @classmethod
    def success(cls, username, attribs=None, iou=None, proxies=None):
        return cls(username, attribs, iou, proxies)

    @classmethod
    def failure(cls, code, message):
        return cls(code=code, message=message)

    @property
    def succeeded(self):
        return self.code is None

    def render(self):
        if not self.succeeded:
            return service_response(
                failure_element('authenticationFailure', self.code, self.message))
        doc_begin = (
            "    <cas:authenticationSuccess>\n"
            "        <cas:user>%s</cas:user>") % xml_escape(self.username)
        doc_proxy = ""
        if self.iou is not None:
            doc_proxy = "        <cas:proxyGrantingTicket>%s</cas:proxyGrantingTicket>" % (
                xml_escape(self.iou))
        doc_parts = [doc_begin]
        for part in (make_cas_attributes(self.attribs), doc_proxy, make_proxies(self.proxies)):
            if len(part) > 0:
                doc_parts.append(part)
        doc_parts.append("    </cas:authenticationSuccess>")
        return service_response('\n'.join(doc_parts))


class ProxyResponse(object):
    """
    Body of a /proxy response.
    """

    content_type = CONTENT_TYPE_XML

    def __init__(self, ticket=None, code=None, message=None):
        self.ticket = ticket
        self.code = code
        self.message = message

    @classmethod
    def success(cls, ticket):
        return cls(ticket)

    @classmethod
    def failure(cls, code, message):
        return cls(code=code, message=message)

    @property
    def succeeded(self):
        return self.code is None

    def render(self):
        if not self.succeeded:
            return service_response(
                failure_element('proxyFailure', self.code, self.message))
        return service_response(
            "    <cas:proxySuccess>\n"
            "        <cas:proxyTicket>%s</cas:proxyTicket>\n"
            "    </cas:proxySuccess>" % xml_escape(self.ticket))


def plainTextResponse(username=None):
    """
    CAS 1.0 /validate body.  `username` is None on failure.
    """
    if username is None:
        return 'no\n\n'
    return 'yes\n' + username + '\n'
