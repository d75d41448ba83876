"""Tests for outbound text helpers (irclink/formatting)."""

import pytest

from irclink.formatting import ctcp_action, parse_ctcp, split_message
from irclink.formatting.message_split import privmsg_limit


class TestSplitMessage:
    def test_short_text_is_one_chunk(self):
        assert split_message("hello", 10) == ["hello"]

    def test_exact_limit_is_one_chunk(self):
        assert split_message("a" * 10, 10) == ["a" * 10]

    def test_long_text_is_split_in_order(self):
        assert split_message("abcdefghij", 4) == ["abcd", "efgh", "ij"]

    def test_empty_text(self):
        assert split_message("", 5) == [""]

    def test_rejects_non_positive_limit(self):
        with pytest.raises(ValueError):
            split_message("x", 0)

    def test_privmsg_limit_depends_on_target(self):
        assert privmsg_limit("#chan") == 495
        assert privmsg_limit("x" * 600) == 1


class TestCtcp:
    def test_action_wraps_text(self):
        assert ctcp_action("waves") == "\x01ACTION waves\x01"

    def test_parse_action(self):
        assert parse_ctcp("\x01ACTION waves hello\x01") == ("ACTION", "waves hello")

    def test_parse_without_closing_delimiter(self):
        assert parse_ctcp("\x01VERSION") == ("VERSION", "")

    def test_plain_text_is_not_ctcp(self):
        assert parse_ctcp("hello") is None
        assert parse_ctcp("\x01") is None
