"""Tests for the error taxonomy and result values."""

import pytest

from storytree.core.errors import (
    BadRequestError,
    ConflictError,
    ErrorKind,
    ForbiddenError,
    InternalError,
    NotFoundError,
    StoryTreeError,
    error_for,
)
from storytree.core.result import Err, Ok, bad_request, conflict, forbidden, not_found


@pytest.mark.parametrize(
    "cls,kind,code",
    [
        (NotFoundError, ErrorKind.NOT_FOUND, "NOT_FOUND"),
        (BadRequestError, ErrorKind.BAD_REQUEST, "INVALID_INPUT"),
        (ForbiddenError, ErrorKind.FORBIDDEN, "FORBIDDEN"),
        (ConflictError, ErrorKind.CONFLICT, "CONFLICT"),
        (InternalError, ErrorKind.INTERNAL, "INTERNAL_SERVER_ERROR"),
    ],
)
def test_default_codes(cls, kind, code):
    err = cls("boom")
    assert isinstance(err, StoryTreeError)
    assert err.kind is kind
    assert err.code == code
    assert error_for(kind, "boom").__class__ is cls


def test_to_dict_hides_trace_by_default():
    err = ConflictError("Already there", "ALREADY_OWNER")
    assert err.to_dict() == {
        "kind": "conflict",
        "code": "ALREADY_OWNER",
        "message": "Already there",
    }
    assert "trace" in err.to_dict(debug=True)


def test_ok_unwraps():
    result = Ok(3)
    assert result.ok
    assert result.unwrap() == 3


@pytest.mark.parametrize(
    "factory,cls",
    [
        (not_found, NotFoundError),
        (bad_request, BadRequestError),
        (forbidden, ForbiddenError),
        (conflict, ConflictError),
    ],
)
def test_err_raises_matching_error(factory, cls):
    result = factory("nope", "SOME_CODE")
    assert isinstance(result, Err)
    assert not result.ok
    with pytest.raises(cls) as exc_info:
        result.unwrap()
    assert exc_info.value.code == "SOME_CODE"
