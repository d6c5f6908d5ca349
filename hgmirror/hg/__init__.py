from .runner import (
    NO_HEADS_EXIT_CODE,
    HgOperation,
    HgRunner,
    ProcessResult,
    ProcessRunner,
    parse_heads,
)

__all__ = [
    "NO_HEADS_EXIT_CODE",
    "HgOperation",
    "HgRunner",
    "ProcessResult",
    "ProcessRunner",
    "parse_heads",
]
