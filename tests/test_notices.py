"""Test user-facing notices."""

from unittest.mock import Mock

import pytest

from quoteflow.notices import Notice, NoticeBoard, NoticeLevel


@pytest.mark.unit
class TestNoticeBoard:
    """Test the notice board."""

    def test_post_levels(self):
        board = NoticeBoard()
        board.info("Loaded")
        board.success("Saved")
        board.warning("Careful")
        board.error("Broken", position_id="p1")

        assert [n.level for n in board.notices] == [
            NoticeLevel.INFO,
            NoticeLevel.SUCCESS,
            NoticeLevel.WARNING,
            NoticeLevel.ERROR,
        ]
        assert board.latest.context == {"position_id": "p1"}
        assert len(board) == 4

    def test_history_is_bounded(self):
        board = NoticeBoard(limit=2)
        for i in range(5):
            board.info(f"notice {i}")

        assert board.messages() == ["notice 3", "notice 4"]

    def test_filter_by_level(self):
        board = NoticeBoard()
        board.info("a")
        board.error("b")

        assert board.messages(NoticeLevel.ERROR) == ["b"]

    def test_callback(self):
        callback = Mock()
        board = NoticeBoard(on_notice=callback)

        notice = board.warning("Heads up")

        callback.assert_called_once_with(notice)
        assert isinstance(notice, Notice)

    def test_clear(self):
        board = NoticeBoard()
        board.info("a")
        board.clear()

        assert board.latest is None
        assert board.notices == []
