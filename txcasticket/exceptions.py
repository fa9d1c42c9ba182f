# Application modules
from txcasticket.constants import (
    ERROR_INVALID_REQUEST, ERROR_INVALID_SERVICE, ERROR_INVALID_TICKET,
    ERROR_INVALID_PROXY_CALLBACK, ERROR_INTERNAL_ERROR)


#=======================================================================
# Exceptions
#=======================================================================

class CASError(Exception):
    """
    Base CAS error.  `code` is the machine-readable CAS error code
    rendered verbatim in the `code` attribute of a failure response.
    """
    code = ERROR_INTERNAL_ERROR
    message = 'Unknown error.'

    def __init__(self, message=None, code=None):
        if message is None:
            message = self.message
        Exception.__init__(self, message)
        self.message = message
        if code is not None:
            self.code = code

    def relabel(self, code):
        """
        Return a copy of this error carrying CAS error code `code`.
        """
        ex = self.__class__(self.message, code)
        ex.__cause__ = self
        return ex

class InternalError(CASError):
    pass

class RequestError(CASError):
    code = ERROR_INVALID_REQUEST
    message = 'Invalid request.'

class BadRequestError(RequestError):
    pass

class InvalidService(RequestError):
    code = ERROR_INVALID_SERVICE
    message = 'Ticket does not match the service provided.'

class InvalidProxyCallback(RequestError):
    code = ERROR_INVALID_PROXY_CALLBACK
    message = 'The proxy callback could not be validated.'

class NotHTTPSError(InvalidProxyCallback):
    message = 'The proxy callback is not HTTPS.'

class TicketError(CASError):
    code = ERROR_INVALID_TICKET
    message = 'Invalid ticket.'

class MalformedTicket(TicketError):
    message = 'Malformed ticket.'

class ExpiredTicket(TicketError):
    message = 'Expired ticket.'

class UnknownPrincipal(TicketError):
    message = 'No user matches ticket.'

class CorruptedTicket(TicketError):
    message = 'Corrupted ticket.'

class TicketAlreadyUsed(TicketError):
    message = 'Unknown or used ticket.'

class InvalidTicketType(TicketError):
    message = 'Ticket type cannot be validated.'

class TicketStoreError(InternalError):
    message = 'The ticket store is unavailable.'

class CouchDBError(TicketStoreError):
    pass

class InvalidLoginTicket(TicketError):
    message = 'Invalid login ticket.'
