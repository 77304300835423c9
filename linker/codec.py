"""Base-62 codec between store-assigned identifiers and short codes.

Codes derived from identifiers are positional Base-62 numerals over a fixed
alphabet. The alphabet order is part of the persisted data format: changing it
changes the code of every existing system-generated link.

Encoding Layout
===============
::
    id = 125
    125 // 62 = 2   remainder 1  ->  "1"
      2 // 62 = 0   remainder 2  ->  "2"
    reversed                     ->  "21"

    alphabet index:  0-9   -> "0".."9"
                     10-35 -> "a".."z"
                     36-61 -> "A".."Z"

How to Use
===========
**Encode an identifier**::
    from linker.codec import encode
    code = encode(record.id)

**Decode a system-generated code**::
    from linker.codec import decode
    identifier = decode("21")  # 125

**Check the alphabet only**::
    is_valid_alphabet("abc123")  # True
    is_valid_alphabet("my-code")  # False

Key Behaviours
===============
- encode(0) returns "0", never an empty string.
- Negative identifiers raise InvalidArgumentError.
- decode rejects None, empty strings and characters outside the alphabet.
- decode raises CodeOverflowError as soon as the running value would pass
  MAX_ID, so oversized codes never produce out-of-range identifiers.
- Custom aliases bypass the codec; decode is never used to validate them.

Functions:
    encode:  identifier -> code.
    decode:  code -> identifier.
    is_valid_alphabet:  alphabet membership test for a whole string.
"""

__all__ = ["ALPHABET", "BASE", "MAX_ID", "decode", "encode", "is_valid_alphabet"]

from linker.exceptions import CodeOverflowError, InvalidArgumentError

ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
BASE = len(ALPHABET)
MAX_ID = 2**63 - 1

_ALPHABET_INDEX = {symbol: index for index, symbol in enumerate(ALPHABET)}


def encode(value: int) -> str:
    """Encode a non-negative identifier to its Base-62 code.

    Args:
        value: Identifier in [0, MAX_ID]

    Returns:
        str: Base-62 code, at least one character long

    Raises:
        InvalidArgumentError: If value is not an integer or is negative
        CodeOverflowError: If value is above MAX_ID

    Example:
        >>> encode(62)
        '10'
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgumentError(f"Identifier must be an integer, got {value!r}")
    if value < 0:
        raise InvalidArgumentError(f"Identifier must be non-negative, got {value}")
    if value > MAX_ID:
        raise CodeOverflowError(f"Identifier {value} exceeds the maximum of {MAX_ID}")

    if value == 0:
        return ALPHABET[0]

    symbols: list[str] = []
    current = value
    while current > 0:
        current, remainder = divmod(current, BASE)
        symbols.append(ALPHABET[remainder])
    symbols.reverse()
    return "".join(symbols)


def decode(code: str) -> int:
    """Decode a Base-62 code back to its identifier.

    Args:
        code: Non-empty string of alphabet symbols

    Returns:
        int: Identifier in [0, MAX_ID]

    Raises:
        InvalidArgumentError: If code is None, not a string, empty, or contains
            a symbol outside the alphabet
        CodeOverflowError: If the decoded value would exceed MAX_ID
    """
    if code is None:
        raise InvalidArgumentError("Code must not be None")
    if not isinstance(code, str):
        raise InvalidArgumentError(f"Code must be a string, got {type(code).__name__}")
    if not code:
        raise InvalidArgumentError("Code must not be empty")

    value = 0
    power = 1
    for symbol in reversed(code):
        digit = _ALPHABET_INDEX.get(symbol)
        if digit is None:
            raise InvalidArgumentError(f"Invalid Base-62 symbol {symbol!r} in code {code!r}")

        # Leading zeros add nothing, however large the place value grows.
        if digit:
            if power > MAX_ID // digit:
                raise CodeOverflowError(f"Code {code!r} exceeds the maximum identifier")
            place_value = digit * power
            if value > MAX_ID - place_value:
                raise CodeOverflowError(f"Code {code!r} exceeds the maximum identifier")
            value += place_value

        power *= BASE

    return value


def is_valid_alphabet(candidate: str | None) -> bool:
    """Return True when candidate is a non-empty string of alphabet symbols."""
    if not isinstance(candidate, str) or not candidate:
        return False
    return all(symbol in _ALPHABET_INDEX for symbol in candidate)
