import enum

from fastapi import HTTPException, status


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"
    BAD_REQUEST = "bad_request"
    UNAVAILABLE = "unavailable"
    UNAUTHORIZED = "unauthorized"
    INTERNAL = "internal"


class ProvenanceError(HTTPException):
    """Tagged failure returned by every registry operation.

    Subclasses HTTPException so the HTTP layer can surface it unchanged;
    `kind` is the transport-independent tag.
    """

    kind: ErrorKind = ErrorKind.INTERNAL
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str):
        super().__init__(status_code=self.http_status, detail=detail)

    def to_dict(self) -> dict:
        return {"error": self.kind.value, "detail": self.detail}


class NotFoundError(ProvenanceError):
    kind = ErrorKind.NOT_FOUND
    http_status = status.HTTP_404_NOT_FOUND


class ConflictError(ProvenanceError):
    kind = ErrorKind.CONFLICT
    http_status = status.HTTP_409_CONFLICT


class ForbiddenError(ProvenanceError):
    kind = ErrorKind.FORBIDDEN
    http_status = status.HTTP_403_FORBIDDEN


class BadRequestError(ProvenanceError):
    kind = ErrorKind.BAD_REQUEST
    http_status = status.HTTP_400_BAD_REQUEST


class ChainUnavailableError(ProvenanceError):
    kind = ErrorKind.UNAVAILABLE
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, operation: str):
        super().__init__(f"Chain oracle unavailable while confirming {operation}")


class UnauthorizedError(ProvenanceError):
    kind = ErrorKind.UNAUTHORIZED
    http_status = status.HTTP_401_UNAUTHORIZED

    def __init__(self, detail: str = "Invalid or missing authentication"):
        super().__init__(detail)


class InternalError(ProvenanceError):
    kind = ErrorKind.INTERNAL
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str = "Internal server error"):
        super().__init__(detail)


class ArtifactNotFoundError(NotFoundError):
    def __init__(self, tag_hash: str):
        super().__init__(f"Artifact {tag_hash} not found")


class ListingNotFoundError(NotFoundError):
    def __init__(self, listing_id: str):
        super().__init__(f"Listing {listing_id} not found")


class SaleNotFoundError(NotFoundError):
    def __init__(self, sale_id: str):
        super().__init__(f"Sale {sale_id} not found")


class InvalidSaleStateError(BadRequestError):
    def __init__(self, current: str, expected: str):
        super().__init__(f"Sale is '{current}', expected '{expected}'")


class TransactionNotConfirmedError(BadRequestError):
    def __init__(self, tx_id: str):
        super().__init__(f"Transaction {tx_id} not found or not accepted on chain")
