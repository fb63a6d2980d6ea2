"""Tests for change notification."""

from snippets.notifier import NOTES_UPDATED, ChangeNotifier, NullNotifier


class TestChangeNotifier:
    def test_publish_to_all(self):
        """Every subscriber receives each event."""
        notifier = ChangeNotifier()
        a, b = [], []
        notifier.subscribe(lambda event, data: a.append((event, data)))
        notifier.subscribe(lambda event, data: b.append(event))

        notifier.publish(NOTES_UPDATED, "n1")

        assert a == [(NOTES_UPDATED, "n1")]
        assert b == [NOTES_UPDATED]

    def test_unsubscribe(self):
        """An unsubscribed callback stops receiving events."""
        notifier = ChangeNotifier()
        seen = []
        unsubscribe = notifier.subscribe(lambda event, data: seen.append(event))
        unsubscribe()
        unsubscribe()  # second call is harmless
        notifier.publish(NOTES_UPDATED)
        assert seen == []
        assert notifier.subscriber_count == 0

    def test_failing_subscriber_dropped(self):
        """A subscriber that raises is dropped; the rest still receive."""
        notifier = ChangeNotifier()
        seen = []

        def broken(event, data):
            raise ConnectionResetError("client went away")

        notifier.subscribe(broken)
        notifier.subscribe(lambda event, data: seen.append(event))

        notifier.publish(NOTES_UPDATED)
        notifier.publish(NOTES_UPDATED)

        assert seen == [NOTES_UPDATED, NOTES_UPDATED]
        assert notifier.subscriber_count == 1

    def test_null_notifier(self):
        """The null notifier accepts everything and does nothing."""
        notifier = NullNotifier()
        notifier.subscribe(lambda event, data: None)()
        notifier.publish(NOTES_UPDATED)
