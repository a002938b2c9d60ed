import pytest

from cow_history.runtime import telemetry


@pytest.fixture(autouse=True)
def quiet_telemetry():
    telemetry.configure(preset="quiet")
    yield
    telemetry.configure()


def test_span_yields_handle_with_metadata() -> None:
    with telemetry.span(
        "history::undo", component="history", metadata={"transaction": 3}
    ) as handle:
        handle.add_metadata("entries", (1, 2))

    assert handle.component_name == "history"
    assert handle.metadata == {"transaction": "3", "entries": "(1, 2)"}


def test_span_reraises_errors() -> None:
    with pytest.raises(RuntimeError):
        with telemetry.span("store::restore"):
            raise RuntimeError("restore failed")


def test_record_event_rejects_unknown_level() -> None:
    telemetry.record_event("history.push", level="debug", data={"cost": 64})
    with pytest.raises(ValueError):
        telemetry.record_event("history.push", level="loud")


def test_configure_validates_arguments() -> None:
    with pytest.raises(ValueError):
        telemetry.configure(preset="verbose")
    with pytest.raises(ValueError):
        telemetry.configure(config=object(), preset="quiet")
    assert telemetry.get_logger("cow_history.tests") is telemetry.get_logger(
        "cow_history.tests"
    )
