# Standard library
from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode


def get_default_port(scheme):
    if scheme.lower() == 'https':
        return 443
    elif scheme.lower() == 'http':
        return 80
    else:
        return None

def normalize_netloc(scheme, netloc):
    """
    Lower-case the host and drop the port if it is the default port for
    `scheme`.
    """
    userinfo, sep, hostport = netloc.rpartition('@')
    host, colon, port = hostport.rpartition(':')
    if colon == '' or ']' in port:
        host, port = hostport, ''
    if port != '' and port == str(get_default_port(scheme)):
        port = ''
    netloc = host.lower()
    if port != '':
        netloc = "{0}:{1}".format(netloc, port)
    if sep != '':
        netloc = "{0}@{1}".format(userinfo, netloc)
    return netloc

def normalize_service(url):
    """
    Normalize a service URL so that two spellings of the same service compare
    equal as strings.
    Scheme and host are lower-cased and default ports are dropped.  Path and
    query are kept as presented.
    """
    if url is None:
        return ""
    url = url.strip()
    if url == "":
        return ""
    p = urlsplit(url)
    if p.scheme == "" or p.netloc == "":
        return url
    scheme = p.scheme.lower()
    netloc = normalize_netloc(scheme, p.netloc)
    return urlunsplit((scheme, netloc, p.path, p.query, p.fragment))

def add_query_arg(url, key, value):
    """
    Set query parameter `key` to `value`, replacing any existing value.
    """
    p = urlsplit(url)
    pairs = parse_qsl(p.query, keep_blank_values=True)
    if any(k == key for k, v in pairs):
        pairs = [(k, v) for k, v in pairs if k != key]
        pairs.append((key, value))
        return urlunsplit((p.scheme, p.netloc, p.path, urlencode(pairs), p.fragment))
    query = urlencode({key: value})
    if p.query != "":
        query = p.query + '&' + query
    return urlunsplit((p.scheme, p.netloc, p.path, query, p.fragment))
