"""Tests for sensitive buffer handling."""

from vaultread.core.memory import SecureBuffer, scrubbed, secure_zero


class TestSecureZero:
    def test_zeros_bytearray(self):
        buf = bytearray(b"sensitive data here!!")
        secure_zero(buf)
        assert all(b == 0 for b in buf)

    def test_zeros_empty(self):
        buf = bytearray()
        secure_zero(buf)
        assert len(buf) == 0

    def test_zeros_memoryview_slice(self):
        buf = bytearray(b"abcdef")
        secure_zero(memoryview(buf)[2:4])
        assert buf == bytearray(b"ab\x00\x00ef")


class TestSecureBuffer:
    def test_context_manager_zeros(self):
        with SecureBuffer(32) as buf:
            buf.data[:] = b"A" * 32
            assert buf.data == bytearray(b"A" * 32)
        assert all(b == 0 for b in buf.data)
        assert buf.closed

    def test_from_bytes_copies(self):
        with SecureBuffer.from_bytes(b"key-material") as buf:
            assert bytes(buf) == b"key-material"
            assert len(buf) == 12

    def test_close_twice(self):
        buf = SecureBuffer(16)
        buf.data[:] = b"\xff" * 16
        buf.close()
        buf.close()
        assert all(b == 0 for b in buf.data)

    def test_zeroed_on_exception(self):
        holder = None
        try:
            with SecureBuffer.from_bytes(b"S" * 16) as buf:
                holder = buf
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert all(b == 0 for b in holder.data)


class TestScrubbed:
    def test_single_buffer_yielded(self):
        buf = bytearray(b"secret")
        with scrubbed(buf) as inner:
            assert inner is buf
        assert buf == bytearray(6)

    def test_multiple_buffers(self):
        a, b = bytearray(b"aa"), bytearray(b"bbb")
        with scrubbed(a, b):
            pass
        assert a == bytearray(2)
        assert b == bytearray(3)
