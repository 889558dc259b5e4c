"""Helpers for making arbitrary text safe to use as a span attribute."""

TOO_LONG_MARK = "..."


def truncate(text: str, max_length: int) -> str:
    """Return a prefix of ``text`` no longer than ``max_length`` characters.

    Text that is cut is marked with a trailing ``...`` which counts towards
    ``max_length``.

    """
    if len(text) <= max_length:
        return text
    if max_length < len(TOO_LONG_MARK):
        return text[:max_length]
    return text[: max_length - len(TOO_LONG_MARK)] + TOO_LONG_MARK


def utf8_encode(text: str) -> str:
    """Return a version of ``text`` that is guaranteed to encode as UTF-8.

    Binary values are expected to have been decoded with the
    ``surrogateescape`` error handler. Their original bytes are restored here
    and anything that is not valid UTF-8 becomes U+FFFD.

    """
    try:
        raw = text.encode("utf-8", errors="surrogateescape")
    except UnicodeEncodeError:
        # lone surrogates that did not come from surrogateescape
        raw = text.encode("utf-8", errors="replace")
    return raw.decode("utf-8", errors="replace")
