import pytest

from presence_core.drift import DriftValidator, EXCESSIVE_DRIFT, VALIDATION_ERROR
from presence_core.errors import SyncValidationError


@pytest.fixture()
def validator():
    v = DriftValidator()
    v.validate(0, 0, True, 0)   # baseline
    return v


def test_first_sync_after_reset_is_trusted():
    v = DriftValidator()
    result = v.validate(5000, 0, True, 30)
    assert result.valid
    assert result.drift == 0


def test_large_drift_is_rejected(validator):
    result = validator.validate(170, 0, True, 30)
    assert not result.valid
    assert result.drift == 140
    assert result.reason == EXCESSIVE_DRIFT


def test_small_drift_is_accepted(validator):
    result = validator.validate(40, 0, True, 30)
    assert result.valid
    assert result.drift == 10


def test_drift_at_limit_is_accepted(validator):
    assert validator.validate(60, 0, True, 30).valid
    assert not validator.validate(61, 0, True, 30).valid


def test_paused_session_expects_no_progress(validator):
    result = validator.validate(5, 0, False, 600)
    assert result.valid
    assert result.drift == 5


def test_fractional_interval_is_floored(validator):
    result = validator.validate(30, 0, True, 30.9)
    assert result.valid
    assert result.drift == 0


@pytest.mark.parametrize("server", ["not a number", None])
def test_bad_input_is_a_validation_error(validator, server):
    result = validator.validate(server, 0, True, 30)
    assert not result.valid
    assert result.reason == VALIDATION_ERROR


def test_reset_restores_first_sync_behaviour(validator):
    validator.reset()
    assert validator.validate(9999, 0, True, 30).valid


def test_ensure_valid_raises_with_result(validator):
    with pytest.raises(SyncValidationError) as exc:
        validator.ensure_valid(170, 0, True, 30)
    assert exc.value.validation.drift == 140
