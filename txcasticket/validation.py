# Application modules
from txcasticket.codec import ticket_type
from txcasticket.constants import TYPE_PGT, TYPE_PT, ERROR_BAD_PGT
from txcasticket.exceptions import (
    RequestError, InvalidService, InvalidTicketType,
    TicketError, TicketAlreadyUsed)
from txcasticket.urls import normalize_service

# External modules
from twisted.internet import defer
from twisted.python import log


class ValidationEngine(object):
    """
    The one place tickets are validated and consumed.

    @param codec: The TicketCodec used to decode presented tickets.
    """

    def __init__(self, codec):
        self.codec = codec
        self._callbacks = []

    def registerValidationCallback(self, callback):
        """
        Call `callback(ticket, service)` after each successful validation.
        A callback may return a Deferred.  Failures of callbacks are logged
        and do not affect the validation.
        """
        self._callbacks.append(callback)

    def validate(self, ticket, service, allowedTypes):
        """
        Validate and consume the wire string `ticket` for `service`.

        Returns a Deferred that fires with the Ticket, or fails with a
        RequestError or TicketError.  When PGT is among `allowedTypes`,
        ticket errors carry the BAD_PGT code.
        """
        d = defer.maybeDeferred(self._validate, ticket, service, allowedTypes)
        if TYPE_PGT in allowedTypes:
            d.addErrback(self._relabelBadPGT)
        return d

    def _relabelBadPGT(self, err):
        err.trap(TicketError)
        raise err.value.relabel(ERROR_BAD_PGT)

    @defer.inlineCallbacks
    def _validate(self, ticket, service, allowedTypes):
        if not ticket:
            raise RequestError("Ticket is required.")
        if not service:
            raise RequestError("Service is required.")
        if ticket_type(ticket) not in allowedTypes:
            raise InvalidTicketType()
        decoded = yield self.codec.decode(ticket, checkUsed=False)
        if decoded.type in (TYPE_PT, TYPE_PGT):
            decoded.proxies = yield self.codec.proxies(decoded)
        # Consumed on presentation, before the service is compared.
        fresh = yield self.codec.consume(decoded)
        if not fresh:
            raise TicketAlreadyUsed()
        if decoded.isBound() and decoded.service != normalize_service(service):
            raise InvalidService()
        yield self._notify(decoded, service)
        return decoded

    def _notify(self, ticket, service):
        def eb(err):
            log.err(err, "Validation callback failed.")

        dl = []
        for callback in self._callbacks:
            d = defer.maybeDeferred(callback, ticket, service)
            d.addErrback(eb)
            dl.append(d)
        return defer.gatherResults(dl)
