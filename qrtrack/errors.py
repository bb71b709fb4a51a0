"""Error kinds raised by the lifecycle engine and the record stores.

Adapters translate these into transport responses: ``ValidationError`` is a
client input problem, ``NotFoundError`` an unknown code, ``ExpiredError`` a
terminal state rather than a failure, and ``StoreError`` a server side
persistence failure.
"""


class QRError(Exception):
    """Base class for every error this package raises."""


class ValidationError(QRError):
    pass


class NotFoundError(QRError):
    def __init__(self, qr_id):
        super().__init__(f"QR {qr_id!r} not found")
        self.qr_id = qr_id


class ExpiredError(QRError):
    def __init__(self, qr_id, expires_at):
        super().__init__(f"QR {qr_id!r} expired at {expires_at.isoformat()}")
        self.qr_id = qr_id
        self.expires_at = expires_at


class StoreError(QRError):
    pass
