"""Tests for batchloader.core.errors module."""

import copy

from batchloader.core.errors import (
    ErrorCategory,
    ErrorContext,
    FetchFailedError,
    FetchTimeoutError,
    InvalidQueryError,
    LoaderError,
    NotLoadedError,
    SourceNotFoundError,
    categorize_error,
    is_retryable,
)


class TestErrorContext:
    def test_to_dict_includes_set_fields(self):
        ctx = ErrorContext(source_id="db", batch_size=3, metadata={"attempt": 2})
        assert ctx.to_dict() == {"source_id": "db", "batch_size": 3, "attempt": 2}

    def test_empty(self):
        assert ErrorContext().to_dict() == {}


class TestLoaderError:
    def test_defaults(self):
        error = LoaderError("unexpected")
        assert error.category is ErrorCategory.INTERNAL
        assert error.retryable is False
        assert str(error) == "unexpected"

    def test_with_context_is_fluent(self):
        error = FetchFailedError("boom").with_context(source_id="db", shard=4)
        assert error.context.source_id == "db"
        assert error.context.metadata == {"shard": 4}

    def test_cause_is_chained(self):
        cause = ConnectionError("reset")
        error = FetchFailedError("boom", cause=cause)
        assert error.__cause__ is cause
        assert error.to_dict()["cause"] == "reset"

    def test_to_dict(self):
        error = InvalidQueryError("bad column").with_context(descriptor="many(Post)")
        assert error.to_dict() == {
            "error_type": "InvalidQueryError",
            "message": "bad column",
            "category": "QUERY",
            "retryable": False,
            "context": {"descriptor": "many(Post)"},
        }

    def test_copy_has_its_own_context(self):
        cause = ConnectionError("reset")
        error = FetchFailedError("boom", cause=cause).with_context(source_id="db", shard=1)

        clone = copy.copy(error).with_context(item_key="7", shard=2)

        assert clone is not error
        assert type(clone) is FetchFailedError
        assert clone.message == "boom"
        assert clone.__cause__ is cause
        assert clone.context.source_id == "db"
        assert clone.context.item_key == "7"
        assert error.context.item_key is None
        assert error.context.metadata == {"shard": 1}

    def test_copy_keeps_subclass_fields(self):
        clone = copy.copy(FetchTimeoutError(2.0))
        assert clone.timeout == 2.0
        assert str(clone) == "Batch timed out after 2.0s"

    def test_repr(self):
        assert repr(NotLoadedError("x")) == "NotLoadedError('x', category=USAGE)"


class TestSubclasses:
    def test_categories(self):
        assert NotLoadedError("x").category is ErrorCategory.USAGE
        assert InvalidQueryError("x").category is ErrorCategory.QUERY
        assert FetchFailedError("x").category is ErrorCategory.BACKEND

    def test_source_not_found(self):
        error = SourceNotFoundError("db")
        assert error.source_id == "db"
        assert error.context.source_id == "db"
        assert "db" in str(error)

    def test_timeout(self):
        error = FetchTimeoutError(1.5)
        assert isinstance(error, FetchFailedError)
        assert error.timeout == 1.5
        assert error.retryable
        assert "1.5" in str(error)


class TestHelpers:
    def test_is_retryable(self):
        assert is_retryable(FetchFailedError("x"))
        assert not is_retryable(InvalidQueryError("x"))
        assert is_retryable(ConnectionError())
        assert not is_retryable(ValueError())

    def test_categorize_error(self):
        assert categorize_error(NotLoadedError("x")) is ErrorCategory.USAGE
        assert categorize_error(TimeoutError()) is ErrorCategory.BACKEND
        assert categorize_error(KeyError("k")) is ErrorCategory.QUERY
        assert categorize_error(ValueError()) is ErrorCategory.UNKNOWN
