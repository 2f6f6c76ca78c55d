"""
Password digests for stored accounts.

WARNING: this is a 32-bit string hash kept only so digests written by the
browser version of the app keep verifying. It is NOT cryptographically
secure and must not be treated as a security boundary.
"""


def _utf16_units(text: str):
    data = text.encode("utf-16-le", "surrogatepass")
    for i in range(0, len(data), 2):
        yield data[i] | (data[i + 1] << 8)


def hash_password(password: str) -> str:
    h = 0
    for unit in _utf16_units(password):
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 0x100000000
    return format(abs(h), "x")


def verify_password(password: str, digest: str) -> bool:
    return hash_password(password) == digest
