# Standard library
import configparser
import io
import os
import os.path

# Application modules
from txcasticket.constants import TYPE_PGT, TYPE_PGTIOU, TYPE_TGC, TYPE_LT

# External modules
from twisted.plugin import getPlugins


def load_defaults(defaults):
    """
    Load default settings.
    """
    lines = []
    for section, opts in (defaults or {}).items():
        lines.append("[%s]" % section)
        for opt, value in opts.items():
            lines.append("%s = %s" % (opt, value))
    settings = '\n'.join(lines)
    del lines
    scp = configparser.ConfigParser(interpolation=None)
    buf = io.StringIO(settings)
    scp.read_file(buf)
    return scp

def load_settings(config_basename, defaults=None, syspath=None):
    """
    Load settings.
    """
    if defaults is None:
        defaults = {}
    scp = load_defaults(defaults)
    appdir = os.path.dirname(os.path.dirname(__file__))
    paths = []
    if syspath is not None:
        paths.append(os.path.join(syspath, "%s.cfg" % config_basename))
    paths.append(os.path.expanduser("~/%src" % config_basename))
    paths.append(os.path.join(appdir, "%s.cfg" % config_basename))
    scp.read(paths)
    return scp

def export_settings_to_dict(scp):
    """
    Export a config parser to a dict of dicts keyed by section.
    """
    settings = {}
    for section in scp.sections():
        settings[section] = dict(scp.items(section))
    return settings

def get_bool(value):
    """
    Interpret a settings value as a boolean.
    """
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on', 'y', 't')

def get_list(value):
    """
    Interpret a comma-separated settings value as an ordered list.
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [x.strip() for x in value.split(',') if x.strip() != '']

def get_plugin_factory(tag, iface):
    """
    Get the first plugin for interface `iface` with a `tag` matching `tag`.
    Returns None if there are no matches.
    """
    for factory in getPlugins(iface):
        if getattr(factory, 'tag', None) == tag:
            return factory
    return None


class CASConfig(object):
    """
    CAS server configuration.

    @param secret: Site-wide secret used to derive ticket keys.  A random
        secret is generated when none is given, which means tickets do not
        survive a restart.
    @param expiration: Lifetime of service and proxy tickets, in seconds.
    @param pgt_expiration: Lifetime of proxy-granting tickets, in seconds.
    @param tgc_expiration: Lifetime of the single sign-on cookie, in seconds.
    @param lt_expiration: Lifetime of login tickets, in seconds.
    @param allow_ticket_reuse: Never report tickets as used.  This is a known
        weakening of single use and only exists for unreliable ticket stores.
    @param attributes: Ordered attribute keys disclosed on validation.
    @param home_url: Redirect target when no service is given.
    @param require_ssl: Refuse requests that did not arrive over TLS.
    @param validate_pgturl: The pgtUrl must be HTTPS with a verified cert.
    @param store_fail_open: Treat ticket store failures as "ticket unused".
    """

    expiration = 30
    pgt_expiration = 60 * 60 * 2
    tgc_expiration = 60 * 60 * 24 * 2
    lt_expiration = 60 * 5
    allow_ticket_reuse = False
    home_url = '/'
    require_ssl = False
    validate_pgturl = True
    store_fail_open = False

    def __init__(self, secret=None, attributes=None, **kwds):
        if secret is None:
            secret = os.urandom(32).hex()
        self.secret = secret
        self.attributes = get_list(attributes)
        for key, value in kwds.items():
            if not hasattr(self.__class__, key):
                raise TypeError("Unknown CAS setting '%s'." % key)
            setattr(self, key, value)

    @classmethod
    def fromSettings(cls, scp, section='CAS'):
        """
        Build a configuration from the `section` of a config parser.
        """
        kwds = {}
        if not scp.has_section(section):
            return cls()
        opts = dict(scp.items(section))
        for key in ('expiration', 'pgt_expiration', 'tgc_expiration', 'lt_expiration'):
            if key in opts:
                kwds[key] = float(opts[key])
        for key in ('allow_ticket_reuse', 'require_ssl',
                    'validate_pgturl', 'store_fail_open'):
            if key in opts:
                kwds[key] = get_bool(opts[key])
        if 'home_url' in opts:
            kwds['home_url'] = opts['home_url']
        return cls(
            secret=opts.get('secret') or None,
            attributes=opts.get('attributes'),
            **kwds)

    def lifetime(self, ticket_type):
        """
        Lifetime in seconds of a freshly issued ticket of `ticket_type`.
        """
        if ticket_type in (TYPE_PGT, TYPE_PGTIOU):
            return self.pgt_expiration
        if ticket_type == TYPE_TGC:
            return self.tgc_expiration
        if ticket_type == TYPE_LT:
            return self.lt_expiration
        return self.expiration
