# Application modules
from txcasticket.couchdb_ticket_store import CouchDBTicketStoreFactory
from txcasticket.in_memory_ticket_store import InMemoryTicketStoreFactory

memoryTicketStoreFactory = InMemoryTicketStoreFactory()
couchdbTicketStoreFactory = CouchDBTicketStoreFactory()
