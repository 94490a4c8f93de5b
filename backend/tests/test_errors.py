"""
Tests for the error taxonomy and its HTTP mapping.
"""
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from pawstudio.errors import (
    AuthenticationError,
    AuthorizationError,
    ContentModeratedError,
    ExternalServiceError,
    GenerationFailedError,
    GenerationTimeoutError,
    InsufficientCreditsError,
    NotFoundError,
    PawStudioError,
    ValidationError,
)


@pytest.mark.parametrize(
    "error_cls, status_code, code",
    [
        (AuthenticationError, 401, "unauthenticated"),
        (AuthorizationError, 403, "forbidden"),
        (ValidationError, 400, "validation_error"),
        (NotFoundError, 404, "not_found"),
        (InsufficientCreditsError, 402, "insufficient_credits"),
        (ExternalServiceError, 500, "external_service_error"),
        (GenerationFailedError, 500, "generation_failed"),
        (ContentModeratedError, 500, "content_moderated"),
        (GenerationTimeoutError, 500, "generation_timeout"),
    ],
)
def test_status_and_code(error_cls, status_code, code):
    error = error_cls()
    assert error.status_code == status_code
    assert error.code == code
    assert error.message


def test_moderation_is_not_retryable():
    assert ContentModeratedError.retryable is False
    assert GenerationFailedError.retryable is True
    assert GenerationTimeoutError.retryable is True
    assert isinstance(ContentModeratedError(), ExternalServiceError)


def test_custom_message():
    error = NotFoundError("Scene not found")
    assert str(error) == "Scene not found"


@pytest.mark.asyncio
async def test_handler_renders_detail_and_code():
    from pawstudio.main import pawstudio_error_handler

    app = FastAPI()
    app.add_exception_handler(PawStudioError, pawstudio_error_handler)

    @app.get("/boom")
    async def boom():
        raise InsufficientCreditsError()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/boom")

    assert response.status_code == 402
    assert response.json() == {
        "detail": "Insufficient credits. Please purchase more credits to continue.",
        "error": "insufficient_credits",
    }
