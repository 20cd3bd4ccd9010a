from typing import Optional

from fastapi import HTTPException, status

from corgi_rewards.constants import ErrorCode


class CustomException(HTTPException):
    """Base class for custom exceptions."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        code: str = "error",
    ):
        super().__init__(status_code=status_code, detail=detail)
        self.code = code


class AuthenticationError(CustomException):
    """Raised when authentication fails."""

    def __init__(self, detail: str = "Authentication failed"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            code=ErrorCode.AUTHENTICATION_ERROR,
        )


class NotFoundError(CustomException):
    """Raised when a resource is not found."""

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            code=ErrorCode.NOT_FOUND,
        )


class ValidationError(CustomException):
    """Raised when input is malformed. Nothing has been mutated."""

    def __init__(self, detail: str = "Invalid request"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            code=ErrorCode.VALIDATION_ERROR,
        )


class InsufficientFundsError(CustomException):
    """Raised when the operator cannot afford a transfer."""

    def __init__(self, detail: str = "Insufficient funds"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            code=ErrorCode.INSUFFICIENT_FUNDS,
        )


class ConflictError(CustomException):
    """Raised when an entity is not in a state that allows the operation."""

    def __init__(self, detail: str = "Conflict"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            code=ErrorCode.CONFLICT,
        )


class BlockchainError(CustomException):
    """Raised when there's an error with blockchain operations."""

    def __init__(self, detail: str = "Blockchain operation failed"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            code=ErrorCode.BLOCKCHAIN_ERROR,
        )


class RetryableChainError(CustomException):
    """Raised when a reward was not sent and the caller may try again."""

    def __init__(
        self,
        detail: str = "Blockchain temporarily unavailable, please try again",
    ):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            code=ErrorCode.RETRYABLE_CHAIN_ERROR,
        )


class PermanentChainError(CustomException):
    """Raised when a reward needs manual remediation."""

    def __init__(
        self,
        detail: str = (
            "Your confirmation was recorded, reward is being investigated"
        ),
        transaction_id: Optional[str] = None,
    ):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            code=ErrorCode.REWARD_INVESTIGATION,
        )
        self.transaction_id = transaction_id
