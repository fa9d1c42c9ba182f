# Ticket types.
TYPE_ST = 'ST'
TYPE_PT = 'PT'
TYPE_PGT = 'PGT'
TYPE_PGTIOU = 'PGTIOU'
TYPE_TGC = 'TGC'
TYPE_LT = 'LT'

TICKET_TYPES = (TYPE_ST, TYPE_PT, TYPE_PGT, TYPE_PGTIOU, TYPE_TGC, TYPE_LT)

# CAS XML namespace.
CAS_NS = 'http://www.yale.edu/tp/cas'

# CAS error codes.
ERROR_INVALID_REQUEST = 'INVALID_REQUEST'
ERROR_INVALID_SERVICE = 'INVALID_SERVICE'
ERROR_INVALID_TICKET = 'INVALID_TICKET'
ERROR_BAD_PGT = 'BAD_PGT'
ERROR_INVALID_PROXY_CALLBACK = 'INVALID_PROXY_CALLBACK'
ERROR_INTERNAL_ERROR = 'INTERNAL_ERROR'
