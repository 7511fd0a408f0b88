"""Unit tests for the output stream filter."""

import pytest

from evalqueue.protocol.framing import FilteredChunk, OutputStreamFilter
from evalqueue.protocol.payload import BEGIN_SENTINEL, END_SENTINEL


@pytest.mark.unit
class TestOutputStreamFilter:
    """Test sentinel tracking over output chunks."""

    def test_plain_output_not_suppressed(self):
        f = OutputStreamFilter()
        assert f.feed("hello\n") == FilteredChunk("hello\n", False)
        assert not f.suppress_active

    def test_region_between_sentinels(self):
        f = OutputStreamFilter()
        begin = f.feed(f">>> {BEGIN_SENTINEL} 1a2b3c4d\n")
        middle = f.feed(">>> exec(compile(...))\n")
        end = f.feed(f">>> {END_SENTINEL}\n")
        after = f.feed(">>> ")

        assert begin.suppress and middle.suppress and end.suppress
        assert not after.suppress
        assert not f.suppress_active

    def test_chunks_are_never_modified(self):
        f = OutputStreamFilter()
        data = f"x{BEGIN_SENTINEL} abc\ny"
        assert f.feed(data).data == data

    def test_begin_sets_state(self):
        f = OutputStreamFilter()
        f.feed(f"{BEGIN_SENTINEL} deadbeef\n")
        assert f.suppress_active

    def test_both_sentinels_in_one_chunk(self):
        f = OutputStreamFilter()
        chunk = f.feed(f"{BEGIN_SENTINEL} 1\nbody\n{END_SENTINEL}\n")
        assert chunk.suppress
        assert not f.suppress_active

    def test_end_then_begin_in_one_chunk(self):
        f = OutputStreamFilter()
        f.feed(f"{BEGIN_SENTINEL} 1\n")
        f.feed(f"{END_SENTINEL}\n{BEGIN_SENTINEL} 2\n")
        assert f.suppress_active

    def test_sentinel_split_across_chunks(self):
        f = OutputStreamFilter()
        first = f.feed("output " + BEGIN_SENTINEL[:10])
        assert not first.suppress
        second = f.feed(BEGIN_SENTINEL[10:] + " 1a2b3c4d\n")
        assert second.suppress
        assert f.suppress_active

        f.feed(END_SENTINEL[:5])
        f.feed(END_SENTINEL[5:] + "\n")
        assert not f.suppress_active

    def test_sentinel_in_tail_not_counted_twice(self):
        f = OutputStreamFilter()
        f.feed(f"{BEGIN_SENTINEL} 1\n{END_SENTINEL}")
        assert not f.suppress_active
        # The end sentinel is still in the kept tail; it must not re-fire
        assert not f.feed("plain").suppress

    def test_reset(self):
        f = OutputStreamFilter()
        f.feed(BEGIN_SENTINEL)
        f.reset()
        assert not f.suppress_active
        assert not f.feed("x").suppress

    def test_custom_sentinels(self):
        f = OutputStreamFilter(begin="<<", end=">>")
        assert f.feed("a << b").suppress
        assert f.suppress_active
        f.feed(">>")
        assert not f.suppress_active
