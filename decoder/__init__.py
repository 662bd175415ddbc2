"""Decoder package -- binary dump frames in, normalized sensor records out."""
from decoder.errors import (
    DecodeError,
    ExcessiveCorruptionError,
    TooShortError,
    UnrecognizedFormatError,
)
from decoder.containers import unwrap_container
from decoder.frame_decoder import decode, detect_format
from decoder.normalizer import normalize
