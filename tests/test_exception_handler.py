"""Unit tests for the global exception handlers.

All tests use a standalone FastAPI app with inline routes so that
no database connections, external services, or real routers are needed.
"""

from unittest.mock import patch

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from pydantic import BaseModel

from app.errors import BuildConflictError, CheckpointError, GenerationError, NotFoundError
from app.middleware import RequestIDMiddleware
from app.middleware.exception_handler import setup_exception_handlers


@pytest.fixture()
def test_app() -> FastAPI:
    """A minimal app with the handlers and request-id middleware."""
    app = FastAPI()
    setup_exception_handlers(app)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/raise-unhandled")
    async def _raise_unhandled() -> None:
        raise RuntimeError("something went very wrong")

    @app.get("/raise-http-404")
    async def _raise_http_404() -> None:
        raise HTTPException(status_code=404, detail="Item not found")

    class Item(BaseModel):
        name: str
        price: float

    @app.post("/validate")
    async def _validate(item: Item) -> dict:
        return item.model_dump()

    @app.get("/raise-not-found")
    async def _raise_not_found() -> None:
        raise NotFoundError("Build not found")

    @app.get("/raise-conflict")
    async def _raise_conflict() -> None:
        raise BuildConflictError()

    @app.get("/raise-checkpoint")
    async def _raise_checkpoint() -> None:
        raise CheckpointError()

    @app.get("/raise-generation")
    async def _raise_generation() -> None:
        raise GenerationError("upstream exploded", kind="server")

    @app.get("/ok")
    async def _ok() -> dict:
        return {"status": "ok"}

    return app


@pytest.fixture()
def client(test_app: FastAPI) -> TestClient:
    return TestClient(test_app, raise_server_exceptions=False)


def test_unhandled_exception_returns_500_without_leaking(client: TestClient) -> None:
    response = client.get("/raise-unhandled")
    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Internal Server Error"
    assert "something went very wrong" not in str(body)
    assert body["request_id"]


def test_http_exception_preserves_status(client: TestClient) -> None:
    response = client.get("/raise-http-404")
    assert response.status_code == 404
    assert response.json()["detail"] == "Item not found"


def test_validation_error_returns_422(client: TestClient) -> None:
    response = client.post("/validate", json={"name": 123})
    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "Validation failed"
    assert isinstance(body["detail"], list)


def test_domain_errors_map_to_their_status(client: TestClient) -> None:
    not_found = client.get("/raise-not-found")
    assert not_found.status_code == 404
    assert not_found.json() | {"request_id": ""} == {
        "error": "Not Found", "detail": "Build not found", "request_id": "",
    }

    conflict = client.get("/raise-conflict")
    assert conflict.status_code == 409
    assert conflict.json()["error"] == "Conflict"

    unsaved = client.get("/raise-checkpoint")
    assert unsaved.status_code == 503
    assert unsaved.json()["error"] == "Service Unavailable"
    assert unsaved.json()["detail"] == "Could not save build progress"


def test_generation_error_is_bad_gateway_and_logged(client: TestClient) -> None:
    with patch("app.middleware.exception_handler.logger") as mock_logger:
        response = client.get("/raise-generation")
    assert response.status_code == 502
    assert response.json()["error"] == "Bad Gateway"
    mock_logger.error.assert_called_once()


def test_unhandled_exception_is_logged_with_traceback(client: TestClient) -> None:
    with patch("app.middleware.exception_handler.logger") as mock_logger:
        client.get("/raise-unhandled")
    call_args = mock_logger.error.call_args
    assert "/raise-unhandled" in str(call_args)
    assert call_args.kwargs.get("exc_info") is not None


def test_request_id_echoed_in_error_body(client: TestClient) -> None:
    response = client.get("/raise-not-found", headers={"X-Request-ID": "trace-42"})
    assert response.json()["request_id"] == "trace-42"
    assert response.headers["X-Request-ID"] == "trace-42"


def test_successful_request_not_affected(client: TestClient) -> None:
    response = client.get("/ok")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
