"""Tests for progress tracking."""

import pytest

from cloudfiles.transfer.progress import ProgressTracker, format_size


class TestProgressTracker:

    def test_increment_and_percent(self):
        tracker = ProgressTracker(total_size=200)
        tracker.increment(50)
        assert tracker.get_complete_size() == 50
        assert tracker.get_complete_percent() == 25.0

    def test_increment_clamps_at_total(self):
        tracker = ProgressTracker(total_size=10)
        tracker.increment(8)
        tracker.increment(8)
        assert tracker.get_complete_size() == 10

    def test_negative_increment_rejected(self):
        with pytest.raises(ValueError):
            ProgressTracker().increment(-1)

    def test_unknown_total(self):
        tracker = ProgressTracker()
        tracker.increment(5)
        assert tracker.get_total_size() is None
        assert tracker.get_complete_percent() is None

    def test_zero_total_is_complete(self):
        assert ProgressTracker(total_size=0).get_complete_percent() == 100.0

    def test_total_set_once(self):
        tracker = ProgressTracker()
        tracker.set_total_size(10)
        tracker.set_total_size(10)
        with pytest.raises(ValueError):
            tracker.set_total_size(11)

    def test_subscribers_see_snapshots(self):
        tracker = ProgressTracker(total_size=4)
        seen = []
        tracker.subscribe(seen.append)
        tracker.increment(1)
        tracker.increment(3)
        assert [s.completed_size for s in seen] == [1, 4]
        assert seen[-1].percent == 100.0

    def test_human_readable(self):
        tracker = ProgressTracker(total_size=2048)
        tracker.increment(1024)
        assert tracker.get_total_size(human_readable=True) == '2.0 KB'
        assert tracker.get_complete_size(human_readable=True) == '1.0 KB'
        assert tracker.get_average_speed(human_readable=True).endswith('/s')

    def test_to_dict(self):
        data = ProgressTracker(name='f', total_size=4).to_dict()
        assert data['name'] == 'f'
        assert data['total_size'] == 4
        assert data['completed_size'] == 0


def test_format_size():
    assert format_size(512) == '512.0 B'
    assert format_size(4 * 1024 * 1024) == '4.0 MB'
