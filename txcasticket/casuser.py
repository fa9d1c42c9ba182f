# Application modules
from txcasticket.interface import ICASUser

# External modules
from zope.interface import implementer

@implementer(ICASUser)
class User(object):

    username = None
    attribs = None
    credential = ""

    def __init__(self, username, attribs, credential=""):
        self.username = username
        self.attribs = attribs
        self.credential = credential

    def get(self, key):
        """
        Return the list of values recorded for attribute `key`.
        """
        return [v for k, v in (self.attribs or []) if k == key]

    def logout(self):
        pass
