from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from admission.exceptions import DomainError


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= HTTPStatus.INTERNAL_SERVER_ERROR:
        logger.error(f'{exc.code} on {request.url.path}: {exc.message}')
    else:
        logger.info(f'{exc.code} on {request.url.path}: {exc.message}')
    return JSONResponse(
        status_code=exc.status_code,
        content={'detail': exc.message, 'code': exc.code},
    )


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    logger.info(f'Validation error on {request.url.path}: {exc.errors()}')
    return JSONResponse(
        status_code=HTTPStatus.BAD_REQUEST,
        content={
            'detail': 'Invalid request data',
            'code': 'validation_error',
            'errors': [
                {
                    'field': '.'.join(str(loc) for loc in error['loc']),
                    'message': error['msg'],
                }
                for error in exc.errors()
            ],
        },
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error(f'Unhandled exception on {request.url.path}')
    return JSONResponse(
        status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
        content={'detail': 'Internal server error', 'code': 'internal_error'},
    )


EXCEPTION_HANDLERS = {
    DomainError: domain_error_handler,
    RequestValidationError: validation_error_handler,
    Exception: unhandled_error_handler,
}


def register_exception_handlers(app: FastAPI) -> None:
    for exception_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exception_class, handler)
