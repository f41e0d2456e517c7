"""Tests for broadcast signals."""
from core.signals import Signal


class TestSignal:
    """Signal holds a value and notifies subscribers on change."""

    def test__set__notifies_subscribers_in_order(self) -> None:
        """Subscribers see the new value in subscription order."""
        signal = Signal(0)
        seen: list[tuple[str, int]] = []
        signal.subscribe(lambda v: seen.append(("first", v)))
        signal.subscribe(lambda v: seen.append(("second", v)))

        signal.set(1)

        assert signal.value == 1
        assert seen == [("first", 1), ("second", 1)]

    def test__set__equal_value_is_not_broadcast(self) -> None:
        """Setting the current value again notifies nobody."""
        signal = Signal("a")
        seen: list[str] = []
        signal.subscribe(seen.append)

        signal.set("a")

        assert seen == []

    def test__unsubscribe__stops_notifications(self) -> None:
        """An unsubscribed callback is not called again."""
        signal = Signal(0)
        seen: list[int] = []
        unsubscribe = signal.subscribe(seen.append)
        signal.set(1)
        unsubscribe()
        unsubscribe()
        signal.set(2)

        assert seen == [1]
        assert signal.subscriber_count == 0

    def test__failing_subscriber__does_not_block_others(self) -> None:
        """A subscriber that raises is logged and the rest still run."""
        signal = Signal(0)
        seen: list[int] = []

        def broken(_: int) -> None:
            raise RuntimeError("boom")

        signal.subscribe(broken)
        signal.subscribe(seen.append)
        signal.set(5)

        assert seen == [5]
