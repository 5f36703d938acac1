class ServiceException(Exception):
    """Base exception for service layer errors"""
    def __init__(self, message, error_code=None, status_code=400):
        self.message = message
        self.error_code = error_code or 'SERVICE_ERROR'
        self.status_code = status_code
        super().__init__(self.message)

    def __str__(self):
        return self.message

    def to_dict(self):
        return {
            'error': True,
            'message': self.message,
            'error_code': self.error_code,
            'status_code': self.status_code
        }

class AuthenticationError(ServiceException):
    """Raised when authentication fails"""
    def __init__(self, message="Authentication failed", error_code=None):
        super().__init__(
            message=message,
            error_code=error_code or 'AUTH_ERROR',
            status_code=401
        )

class ValidationError(ServiceException):
    """Raised when input validation fails"""
    def __init__(self, message="Validation failed", error_code=None):
        super().__init__(
            message=message,
            error_code=error_code or 'VALIDATION_ERROR',
            status_code=400
        )

class NotFoundError(ServiceException):
    """Raised when a requested resource does not exist for the caller"""
    def __init__(self, message="Not found", error_code=None):
        super().__init__(
            message=message,
            error_code=error_code or 'NOT_FOUND',
            status_code=404
        )

class UserNotFound(NotFoundError):
    def __init__(self, message="User not found"):
        super().__init__(message, 'USER_NOT_FOUND')

class WorkloadNotFound(NotFoundError):
    def __init__(self, message="Workload not found"):
        super().__init__(message, 'WORKLOAD_NOT_FOUND')


# Synchronous enqueue rejections. None of these mutate state.

class InvalidSizeClass(ValidationError):
    def __init__(self, size):
        self.size = size
        super().__init__(f"Unknown resources size '{size}'", 'InvalidSizeClass')

class SSHKeyMissing(ValidationError):
    def __init__(self, message="SSH key is required, please add one to your profile"):
        super().__init__(message, 'SSHKeyMissing')

class NameConflict(ValidationError):
    def __init__(self, name):
        self.name = name
        super().__init__(
            f"Name '{name}' is not available, please choose a different name",
            'NameConflict'
        )

class InsufficientQuota(ValidationError):
    """Raised when a debit would take the vm or public ip quota below zero"""
    def __init__(self, kind):
        self.kind = kind
        super().__init__(f"Not enough {kind} quota to deploy", 'InsufficientQuota')

    def to_dict(self):
        body = super().to_dict()
        body['kind'] = self.kind
        return body


# Asynchronous failures. These reach the user as notifications only.

class NoSuitableNode(ServiceException):
    def __init__(self, message="No grid node matches the requested resources"):
        super().__init__(message, 'NoSuitableNode', status_code=500)

class GridDeployFailed(ServiceException):
    def __init__(self, message="Grid deployment failed"):
        super().__init__(message, 'GridDeployFailed', status_code=500)


# Infrastructure errors.

class GridError(ServiceException):
    """Raised when a call to the grid proxy or gateway fails"""
    def __init__(self, message="Grid request failed", error_code=None):
        super().__init__(message, error_code or 'GridError', status_code=500)

class GridNotFound(GridError):
    """Raised when the grid reports that the requested object does not exist"""
    def __init__(self, message):
        super().__init__(message, 'GridNotFound')

class ContractNotExists(GridError):
    def __init__(self, contract_id):
        self.contract_id = contract_id
        super().__init__(f"Contract {contract_id} does not exist", 'ContractNotExists')

class StreamUnavailable(ServiceException):
    def __init__(self, message="Request stream is unavailable"):
        super().__init__(message, 'StreamUnavailable', status_code=500)

class StoreUnavailable(ServiceException):
    def __init__(self, message="Portal store is unavailable"):
        super().__init__(message, 'DATABASE_ERROR', status_code=500)

class MessageDecodeError(ServiceException):
    """Raised when a stream payload is not a known message"""
    def __init__(self, message):
        super().__init__(message, 'MESSAGE_DECODE_ERROR', status_code=500)
