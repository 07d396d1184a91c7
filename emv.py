# emv.py
import re
from typing import List, Tuple

# Mock ICC data carried in DE 55 for chip and contactless reads: "TAG:VALUE,TAG:VALUE"
DEFAULT_EMV_TAGS = (
    "9F26:08A000000000000000,9F27:01,9F10:06010A03A0A000,9F37:04A54F5D1E,"
    "9F36:02000A,95:0500000000,9A:03230215,9C:01,9F02:06000000000100,"
    "9F03:06000000000000"
)

_FIELD_55 = re.compile(r"Field 055(?: \(EMV Tags\))?: (.*?)(?:\n|$)")


def parse_emv_tags(raw: str) -> List[Tuple[str, str]]:
    """Split a flat tag string into (tag, value) pairs; malformed entries are skipped."""
    pairs = []
    for item in (raw or "").split(","):
        tag, _, value = item.partition(":")
        tag, value = tag.strip(), value.strip()
        if tag and value:
            pairs.append((tag, value))
    return pairs


def expand_emv_tags(text: str) -> str:
    """
    Rewrite the DE 55 line of a formatted message as one indented line per tag,
    the way the message viewer presents it. Text without DE 55 is returned as is.
    """
    if not text:
        return text
    match = _FIELD_55.search(text)
    if not match or not match.group(1).strip():
        return text

    lines = []
    for item in match.group(1).split(","):
        parts = item.split(":")
        if len(parts) < 2 or not parts[0] or not parts[1]:
            lines.append(item)
        else:
            lines.append(f"    {parts[0]}: {parts[1]}")
    block = "Field 055 (EMV Tags):\n" + "\n".join(lines) + "\n"
    return text[:match.start()] + block + text[match.end():]
