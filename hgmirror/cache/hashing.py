import hashlib
import re

# scheme://host[:port]/.../segment[:port]/ ; the segment becomes a readable suffix
_SUFFIX_PATTERN = re.compile(r".+/([^/\\:]+)(:\d+)?/?")


def hash_source(source: str) -> str:
    """
    Hash a repository URL into a string that is safe as a single directory name.

    A trailing ``/`` is appended when missing, so ``u`` and ``u + "/"`` map to
    the same identifier. The result is the 40 character uppercase SHA-1 of the
    normalized URL, followed by ``-<last path segment>`` when the URL has one.

    Examples:
        https://example.com/repo        -> <40 hex digits>-repo
        https://example.com:8080/       -> <40 hex digits>-example.com
        repo                            -> <40 hex digits>

    Raises:
        AssertionError: If SHA-1 is unavailable in this interpreter. Every cache
            path depends on it, so there is no fallback.
    """
    if not source.endswith("/"):
        source += "/"
    match = _SUFFIX_PATTERN.fullmatch(source)
    try:
        digest = hashlib.sha1(source.encode("utf-8"))
    except ValueError as e:
        raise AssertionError(f"SHA-1 digest unavailable: {e}") from e
    suffix = f"-{match.group(1)}" if match else ""
    return digest.hexdigest().upper() + suffix
