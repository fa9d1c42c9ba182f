# Application modules
from txcasticket.basic_realm import BasicRealmFactory

basicRealmFactory = BasicRealmFactory()
