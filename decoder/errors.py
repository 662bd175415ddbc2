"""Fatal decode failures. A dump that raises one of these ends in `error`."""


class DecodeError(Exception):
    """Base class for buffers that cannot produce a frame sequence."""


class UnrecognizedFormatError(DecodeError):
    """No known frame signature matches the buffer (or the declared format)."""


class TooShortError(DecodeError):
    def __init__(self, size: int, minimum: int):
        self.size = size
        self.minimum = minimum
        super().__init__(
            f"Buffer of {size} bytes is shorter than the smallest frame ({minimum} bytes)")


class ExcessiveCorruptionError(DecodeError):
    def __init__(self, corrupt: int, valid: int, max_ratio: float):
        self.corrupt = corrupt
        self.valid = valid
        self.max_ratio = max_ratio
        total = corrupt + valid
        self.ratio = corrupt / total if total else 0.0
        super().__init__(
            f"{corrupt} of {total} frames failed consistency checks "
            f"({self.ratio:.1%} > {max_ratio:.0%} limit)")
