from unittest.mock import patch

import pytest

import app
from soci_builder.errors import FailureKind, PushError
from soci_builder.outcome import Outcome

URI = "registry.example.com/app@sha256:" + "a" * 64


def test_success_prints_message(capsys):
    with patch.object(app, "handle_request", return_value=Outcome.success()) as handle:
        assert app.main(["--repository", URI, "--min-layer-size", "0"]) == 0

    assert "Successfully built and pushed SOCI index" in capsys.readouterr().out
    args, kwargs = handle.call_args
    assert args[:2] == (URI, 0)
    assert kwargs["settings"] is app.config


def test_skip_exits_zero(capsys):
    with patch.object(app, "handle_request", return_value=Outcome.skipped_empty_index()):
        assert app.main(["--repository", URI]) == 0

    assert "does not contain any zTOCs" in capsys.readouterr().out


def test_failure_exits_non_zero(capsys):
    outcome = Outcome.failed(FailureKind.PUSH, PushError("denied"))

    with patch.object(app, "handle_request", return_value=outcome):
        assert app.main(["--repository", URI]) == 1

    err = capsys.readouterr().err
    assert "error building SOCI index" in err
    assert "denied" in err


def test_default_min_layer_size():
    args = app.parse_args(["--repository", URI])

    assert args.min_layer_size == app.config.DEFAULT_MIN_LAYER_SIZE


@pytest.mark.parametrize("argv", [[], ["--repository", URI, "--min-layer-size", "-1"]])
def test_invalid_arguments(argv):
    with pytest.raises(SystemExit) as exc:
        app.parse_args(argv)

    assert exc.value.code == 2
