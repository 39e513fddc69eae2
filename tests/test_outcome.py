import pytest

from soci_builder.errors import (
    BuildError,
    EmptyIndexError,
    FailureKind,
    PullError,
    PushError,
    is_empty_index,
)
from soci_builder.outcome import Outcome, OutcomeKind


def test_success_and_skips_carry_no_error():
    for outcome in (Outcome.success(), Outcome.skipped_validation(), Outcome.skipped_empty_index()):
        assert outcome.ok
        assert outcome.as_result()[1] is None
        assert outcome.to_dict()["error"] is None


def test_failed_wraps_foreign_errors():
    cause = TimeoutError("read timed out")

    outcome = Outcome.failed(FailureKind.PULL, cause)

    assert outcome.kind is OutcomeKind.FAILED
    assert outcome.message == "Image pull error"
    assert isinstance(outcome.error, PullError)
    assert outcome.error.__cause__ is cause
    assert "read timed out" in str(outcome.error)


def test_failed_keeps_matching_error():
    error = PushError("denied")

    outcome = Outcome.failed(FailureKind.PUSH, error)

    assert outcome.error is error
    assert not outcome.ok
    assert outcome.to_dict() == {"message": "SOCI index push error", "outcome": "failed", "error": "denied"}


@pytest.mark.parametrize("kind", list(FailureKind))
def test_every_kind_has_a_label(kind):
    assert Outcome.failed(kind, RuntimeError("boom")).message == kind.label


def test_is_empty_index_follows_cause_chain():
    try:
        try:
            raise EmptyIndexError()
        except EmptyIndexError as e:
            raise BuildError("wrapped") from e
    except BuildError as e:
        wrapped = e

    assert is_empty_index(EmptyIndexError())
    assert is_empty_index(wrapped)
    assert not is_empty_index(BuildError("corrupt layer"))
    assert not is_empty_index(None)


def test_error_raised_while_handling_empty_index_is_a_failure():
    try:
        try:
            raise EmptyIndexError()
        except EmptyIndexError:
            raise BuildError("index write failed")
    except BuildError as e:
        error = e

    assert isinstance(error.__context__, EmptyIndexError)
    assert not is_empty_index(error)
