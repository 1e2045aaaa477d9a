"""Tests for the application exception taxonomy."""

from __future__ import annotations

import pytest

from bandera_service.core.exceptions import (
    AccessDeniedException,
    AlreadyExistsException,
    AppException,
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ServiceUnavailableException,
    StoreUnavailableException,
    ValidationException,
)


@pytest.mark.unit
class TestAppException:
    """Tests for the RFC 7807 base exception."""

    def test_problem_details_include_extra(self) -> None:
        exc = AppException(
            status_code=404,
            detail="Feature flag abc not found",
            type="flag-not-found",
            extra={"flag_id": "abc"},
        )

        assert exc.to_problem_details() == {
            "type": "flag-not-found",
            "title": "Not Found",
            "status": 404,
            "detail": "Feature flag abc not found",
            "flag_id": "abc",
        }

    def test_instance_is_rendered_when_set(self) -> None:
        exc = AppException(status_code=400, detail="bad", instance="/flags/1")

        assert exc.to_problem_details()["instance"] == "/flags/1"

    def test_unknown_status_gets_generic_title(self) -> None:
        assert AppException(status_code=418, detail="teapot").title == "Error"

    def test_str_is_detail(self) -> None:
        assert str(AppException(status_code=500, detail="boom")) == "boom"


@pytest.mark.unit
@pytest.mark.parametrize(
    ("exc", "status_code", "type_"),
    [
        (NotFoundException("missing"), 404, "not-found"),
        (ValidationException("bad key"), 422, "validation-error"),
        (AccessDeniedException(), 403, "access-denied"),
        (AlreadyExistsException("taken"), 409, "already-exists"),
        (StoreUnavailableException(), 503, "store-unavailable"),
    ],
)
def test_status_and_type(exc: AppException, status_code: int, type_: str) -> None:
    assert exc.status_code == status_code
    assert exc.type == type_


@pytest.mark.unit
def test_hierarchy() -> None:
    """Narrow errors can be caught through their broader parents."""
    assert isinstance(AccessDeniedException(), ForbiddenException)
    assert isinstance(AlreadyExistsException("taken"), ConflictException)
    assert isinstance(StoreUnavailableException(), ServiceUnavailableException)
    assert isinstance(NotFoundException("x"), AppException)
