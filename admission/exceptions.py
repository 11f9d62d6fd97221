"""Error taxonomy for ticket allocation, check-in and snapshots.

Every error raised out of the core carries an HTTP status and a short
machine-readable code so callers can tell "pick another number" apart from
"the pool is sold out". A repeated check-in is not an error and never shows
up here.
"""

from http import HTTPStatus


class DomainError(Exception):
    code = 'domain_error'

    def __init__(self, message: str, status_code: int = HTTPStatus.BAD_REQUEST):
        self.message = message
        self.status_code = int(status_code)
        super().__init__(message)


class InputValidationError(DomainError):
    code = 'validation_error'


class NumberOutOfRangeError(InputValidationError):
    code = 'number_out_of_range'

    def __init__(self, number: int, max_number: int):
        self.number = number
        self.max_number = max_number
        super().__init__(f'Ticket number must be between 1 and {max_number}')


class ConflictError(DomainError):
    code = 'conflict'

    def __init__(self, message: str):
        super().__init__(message, HTTPStatus.CONFLICT)


class NumberUnavailableError(ConflictError):
    code = 'number_unavailable'

    def __init__(self, number: int):
        self.number = number
        super().__init__(
            f'Ticket number {number} is not available, pick another or leave it empty'
        )


class PoolExhaustedError(ConflictError):
    code = 'pool_exhausted'

    def __init__(self):
        super().__init__('No free ticket numbers left')


class PoolBusyError(ConflictError):
    code = 'pool_busy'

    def __init__(self):
        super().__init__(
            'All free ticket numbers are being claimed right now, try again'
        )


class NotFoundError(DomainError):
    code = 'not_found'

    def __init__(self, message: str):
        super().__init__(message, HTTPStatus.NOT_FOUND)


class StorageError(DomainError):
    code = 'storage_error'

    def __init__(self, message: str = 'Storage operation failed'):
        super().__init__(message, HTTPStatus.INTERNAL_SERVER_ERROR)


class BackupError(DomainError):
    code = 'backup_error'

    def __init__(self, message: str):
        super().__init__(message, HTTPStatus.INTERNAL_SERVER_ERROR)
