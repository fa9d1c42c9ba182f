# Standard library
import hashlib
from textwrap import dedent

# Application module
from txcasticket.casuser import User
from txcasticket.interface import ICASUser, IRealmFactory

# External module
from twisted.cred.checkers import InMemoryUsernamePasswordDatabaseDontUse
from twisted.cred.error import UnauthorizedLogin
from twisted.cred.portal import IRealm
from twisted.internet import defer
from twisted.plugin import IPlugin
from zope.interface import implementer


def credential_fragment(secret):
    """
    Derive the short credential fragment that is mixed into ticket keys.
    """
    if not secret:
        return ""
    return hashlib.sha256(secret.encode('utf-8')).hexdigest()[8:12]


@implementer(IPlugin, IRealmFactory)
class BasicRealmFactory(object):
    """
    A basic realm factory.
    """

    tag = "basic_realm"

    opt_help = dedent('''\
            A basic realm that creates an avatar from an ID with no
            attributes.
            ''')

    opt_usage = '''This type of realm has no options.'''

    def generateRealm(self, argstring=""):
        """
        Produce a BasicRealm instance.
        """
        return BasicRealm()


@implementer(IRealm)
class BasicRealm(object):
    """
    A Basic user realm that maps an avatar ID to an avatar with a matching
    username and no attributes.
    """

    def requestAvatar(self, avatarId, mind, *interfaces):
        """
        """
        def cb():
            if not ICASUser in interfaces:
                raise NotImplementedError("This realm only implements ICASUser.")
            username = avatarId
            if isinstance(username, bytes):
                username = username.decode('utf-8')
            avatar = User(username, None)
            return (ICASUser, avatar, avatar.logout)
        return defer.maybeDeferred(cb)


@implementer(IRealm)
class StaticRealm(object):
    """
    A realm backed by a fixed mapping of users.

    `users` maps a username to a dict.  The optional `password` key is the
    user's password; every other key is an attribute.  List values are
    multi-valued attributes.
    """

    def __init__(self, users):
        self.users = users

    def setPassword(self, username, password):
        self.users[username]['password'] = password

    def checker(self):
        """
        Create a credentials checker for the users in this realm.
        """
        checker = InMemoryUsernamePasswordDatabaseDontUse()
        for username, entry in self.users.items():
            if entry.get('password'):
                checker.addUser(
                    username.encode('utf-8'), entry['password'].encode('utf-8'))
        return checker

    def requestAvatar(self, avatarId, mind, *interfaces):
        """
        """
        def cb():
            if not ICASUser in interfaces:
                raise NotImplementedError("This realm only implements ICASUser.")
            if isinstance(avatarId, bytes):
                username = avatarId.decode('utf-8')
            else:
                username = avatarId
            try:
                entry = self.users[username]
            except KeyError:
                raise UnauthorizedLogin("Unknown user '%s'." % username)
            attribs = []
            for key in sorted(entry.keys()):
                if key == 'password':
                    continue
                value = entry[key]
                if isinstance(value, (list, tuple)):
                    attribs.extend((key, v) for v in value)
                else:
                    attribs.append((key, value))
            avatar = User(
                username, attribs, credential_fragment(entry.get('password')))
            return (ICASUser, avatar, avatar.logout)
        return defer.maybeDeferred(cb)
