"""Frame decoder tests: detection, truncation, corruption, containers.

Run:
    pytest tests/test_frame_decoder.py -v
"""

import bz2

import lz4.frame
import pytest

from decoder import (
    DecodeError,
    ExcessiveCorruptionError,
    TooShortError,
    UnrecognizedFormatError,
    decode,
    detect_format,
)


def _corrupt_checksum(frame: bytes) -> bytes:
    """Flip one data byte so the sum16 check fails but the signature survives."""
    data = bytearray(frame)
    data[10] ^= 0xFF
    return bytes(data)


# =============================================================================
# WELL-FORMED INPUT
# =============================================================================

class TestWellFormedBuffers:

    def test_n_frames_decode_in_order(self, mp_frame):
        buf = b"".join(mp_frame(rtd_offset=i) for i in range(25))
        frames, stats = decode(buf)

        assert len(frames) == 25
        assert [f.index for f in frames] == list(range(25))
        assert [f.values["rtd"] for f in frames] == sorted(f.values["rtd"] for f in frames)
        assert stats.valid_frames == 25
        assert stats.corrupt_frames == 0
        assert stats.detected_format == "MP"
        assert stats.container == "raw"

    def test_mdg_buffer_detected(self, mdg_frame):
        buf = b"".join(mdg_frame(rtd_offset=i) for i in range(5))
        frames, stats = decode(buf)

        assert len(frames) == 5
        assert all(f.format == "MDG" for f in frames)
        assert stats.detected_format == "MDG"

    def test_trailing_partial_frame_dropped(self, mp_frame):
        """10 frames + 3 stray bytes -> 10 frames, no error, no corruption."""
        buf = b"".join(mp_frame(rtd_offset=i) for i in range(10)) + b"MP\x01"
        frames, stats = decode(buf)

        assert len(frames) == 10
        assert stats.truncated_bytes == 3
        assert stats.corrupt_frames == 0

    def test_frame_offsets_follow_width(self, mp_frame, config):
        width = config.layouts["MP"].frame_width
        buf = b"".join(mp_frame(rtd_offset=i) for i in range(4))
        frames, _ = decode(buf)
        assert [f.offset for f in frames] == [0, width, 2 * width, 3 * width]


# =============================================================================
# FATAL ERRORS
# =============================================================================

class TestFatalErrors:

    def test_too_short(self):
        with pytest.raises(TooShortError) as excinfo:
            decode(b"MP" + b"\x00" * 10)
        assert excinfo.value.size == 12
        assert excinfo.value.minimum == 36

    def test_empty_buffer_too_short(self):
        with pytest.raises(TooShortError):
            decode(b"")

    def test_unrecognized_signature(self):
        with pytest.raises(UnrecognizedFormatError):
            decode(b"\x00" * 400)

    def test_errors_share_base_class(self):
        with pytest.raises(DecodeError):
            decode(b"\xff" * 400)

    def test_declared_format_mismatch(self, mp_frame):
        buf = b"".join(mp_frame(rtd_offset=i) for i in range(5))
        with pytest.raises(UnrecognizedFormatError):
            decode(buf, declared_format="MDG")

    def test_declared_format_validated_case_insensitive(self, mp_frame):
        buf = b"".join(mp_frame(rtd_offset=i) for i in range(5))
        frames, stats = decode(buf, declared_format="mp")
        assert len(frames) == 5

    def test_unknown_declared_format(self, mp_frame):
        with pytest.raises(UnrecognizedFormatError):
            decode(mp_frame() * 3, declared_format="XYZ")


# =============================================================================
# CORRUPTION
# =============================================================================

class TestCorruption:

    def test_bad_checksum_skipped_and_counted(self, mp_frame, config):
        width = config.layouts["MP"].frame_width
        frames_raw = [mp_frame(rtd_offset=i) for i in range(10)]
        frames_raw[3] = _corrupt_checksum(frames_raw[3])
        frames, stats = decode(b"".join(frames_raw))

        assert len(frames) == 9
        assert stats.corrupt_frames == 1
        assert stats.corrupt_offsets == (3 * width,)
        assert 3 not in [f.index for f in frames]
        assert frames[3].values["rtd"] == frames[2].values["rtd"] + 2

    def test_damaged_first_signature_still_detected(self, mp_frame):
        frames_raw = [mp_frame(rtd_offset=i) for i in range(10)]
        frames_raw[0] = b"\x00\x00" + frames_raw[0][2:]
        frames, stats = decode(b"".join(frames_raw))

        assert len(frames) == 9
        assert stats.corrupt_frames == 1
        assert stats.detected_format == "MP"

    def test_damaged_signature_at_region_switch(self, mp_frame, mdg_frame):
        """A lost first MDG signature costs one frame, not a misaligned region."""
        mdg = [mdg_frame(rtd_offset=i) for i in range(20)]
        mdg[0] = b"\x00\x00" + mdg[0][2:]
        buf = b"".join(mp_frame(rtd_offset=i) for i in range(5)) + b"".join(mdg)
        frames, stats = decode(buf)

        assert len(frames) == 24
        assert stats.corrupt_frames == 1
        assert stats.corrupt_offsets == (5 * 36,)
        assert dict(stats.frames_by_format) == {"MP": 5, "MDG": 19}
        assert stats.detected_format == "MIXED"
        assert frames[5].offset == 5 * 36 + 80

    def test_long_mixed_buffer_resyncs_once(self, mp_frame, mdg_frame):
        mdg = [mdg_frame(rtd_offset=i) for i in range(60)]
        mdg[0] = b"\xff\xff" + mdg[0][2:]
        buf = b"".join(mp_frame(rtd_offset=i) for i in range(40)) + b"".join(mdg)
        frames, stats = decode(buf)

        assert len(frames) == 99
        assert stats.corrupt_frames == 1

    def test_garbage_span_is_skipped(self, mp_frame):
        good = [mp_frame(rtd_offset=i) for i in range(10)]
        buf = b"".join(good[:5]) + b"\x00" * 200 + b"".join(good[5:])
        frames, stats = decode(buf)

        assert len(frames) == 10
        assert stats.corrupt_frames == 2
        assert frames[5].offset == 5 * 36 + 200

    def test_half_corrupt_is_tolerated(self, mp_frame):
        """Exactly 50% corrupt does not exceed the limit."""
        frames_raw = [mp_frame(rtd_offset=i) for i in range(4)]
        frames_raw[1] = _corrupt_checksum(frames_raw[1])
        frames_raw[3] = _corrupt_checksum(frames_raw[3])
        frames, stats = decode(b"".join(frames_raw))

        assert len(frames) == 2
        assert stats.corruption_ratio == 0.5

    def test_excessive_corruption_aborts(self, mp_frame):
        frames_raw = [mp_frame(rtd_offset=i) for i in range(4)]
        for i in (1, 2, 3):
            frames_raw[i] = _corrupt_checksum(frames_raw[i])
        with pytest.raises(ExcessiveCorruptionError) as excinfo:
            decode(b"".join(frames_raw))
        assert excinfo.value.corrupt == 3
        assert excinfo.value.valid == 1


# =============================================================================
# MIXED BUFFERS AND CONTAINERS
# =============================================================================

class TestMixedAndContainers:

    def test_mp_then_mdg_regions(self, mp_frame, mdg_frame):
        buf = b"".join(mp_frame(rtd_offset=i) for i in range(3)) + \
              b"".join(mdg_frame(rtd_offset=i) for i in range(3))
        frames, stats = decode(buf)

        assert [f.format for f in frames] == ["MP"] * 3 + ["MDG"] * 3
        assert stats.detected_format == "MIXED"
        assert dict(stats.frames_by_format) == {"MP": 3, "MDG": 3}

    def test_detect_format_picks_leading_layout(self, mdg_frame, mp_frame, config):
        buf = mdg_frame() + mdg_frame(rtd_offset=1) + mp_frame(rtd_offset=2)
        assert detect_format(buf, config).name == "MDG"

    def test_lz4_container(self, mp_frame):
        raw = b"".join(mp_frame(rtd_offset=i) for i in range(20))
        raw_frames, _ = decode(raw)
        frames, stats = decode(lz4.frame.compress(raw))

        assert stats.container == "lz4"
        assert [f.values for f in frames] == [f.values for f in raw_frames]

    def test_bz2_container(self, mdg_frame):
        raw = b"".join(mdg_frame(rtd_offset=i) for i in range(20))
        frames, stats = decode(bz2.compress(raw))

        assert stats.container == "bz2"
        assert len(frames) == 20

    def test_corrupt_container(self):
        with pytest.raises(UnrecognizedFormatError):
            decode(b"BZh9" + b"\x00" * 64)

    def test_decode_is_pure(self, mp_frame):
        buf = b"".join(mp_frame(rtd_offset=i) for i in range(6)) + b"\x01\x02"
        first = decode(buf)
        second = decode(buf)
        assert first[0] == second[0]
        assert first[1].to_dict() == second[1].to_dict()
