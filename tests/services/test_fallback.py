import pytest

from workstation.errors import ConnectivityError, WorkstationError
from workstation.services.fallback import FallbackChain, Strategy


def test_fallback_chain_stops_at_first_success(logger):
    calls = []

    def first(value):
        calls.append("first")
        raise WorkstationError("first failed")

    def second(value):
        calls.append("second")
        return value * 2

    def third(value):
        calls.append("third")
        return None

    chain = FallbackChain(
        "demo",
        [Strategy("first", first), Strategy("second", second), Strategy("third", third)],
        logger,
    )

    assert chain.run(21) == 42
    assert calls == ["first", "second"]
    assert [outcome.succeeded for outcome in chain.outcomes] == [False, True]


def test_fallback_chain_raises_one_classified_error(logger):
    def failing(name):
        def attempt():
            raise WorkstationError(f"{name} failed", command=f"cmd-{name}")

        return attempt

    chain = FallbackChain(
        "key bootstrap",
        [Strategy("a", failing("a")), Strategy("b", failing("b"))],
        logger,
        error_cls=ConnectivityError,
    )

    with pytest.raises(ConnectivityError, match=r"tried: a, b") as excinfo:
        chain.run()

    assert excinfo.value.command == "cmd-b"
    assert "a: a failed" in excinfo.value.output
    assert "b: b failed" in excinfo.value.output


def test_fallback_chain_propagates_unclassified_errors(logger):
    def broken():
        raise TypeError("bug")

    chain = FallbackChain("demo", [Strategy("broken", broken)], logger)

    with pytest.raises(TypeError):
        chain.run()
