import re
from typing import Optional

from config import DEFAULT_TEMPO, HEADER_KEYS_TO_IGNORE

TEMPO_DIRECTIVE = re.compile(r"^[ \t]*Q:\s*(\d+)[^\n]*(?:\n|$)", re.IGNORECASE | re.MULTILINE)
HEADER_LINE = re.compile(r"^[A-Za-z]:")


def preprocess_score_text(data: str) -> str:
    """
    Drop blank lines, % comments and informational header fields.

    Kept headers come first, followed by the music lines, in their original order.
    """
    data = data.lstrip("\ufeff").strip()
    headers, notes = [], []
    for line in data.split("\n"):
        line = line.strip()
        if not line or line.startswith("%"):
            continue
        if HEADER_LINE.match(line):
            if line[0].upper() in HEADER_KEYS_TO_IGNORE:
                continue
            headers.append(line)
        else:
            notes.append(line)
    return "\n".join(headers) + "\n" + "\n".join(notes)


def extract_tempo_directive(text: str) -> tuple[Optional[int], str]:
    """Return (qpm from the first Q: line or None, text with that line removed)."""
    m = TEMPO_DIRECTIVE.search(text)
    if not m:
        return None, text
    return int(m.group(1)), text[:m.start()] + text[m.end():]


def resolve_tempo(override: Optional[int], embedded: Optional[int]) -> int:
    # session override > tempo embedded in the score > default; non-positive tempos are ignored
    for qpm in (override, embedded):
        if qpm is not None and int(qpm) > 0:
            return int(qpm)
    return DEFAULT_TEMPO


def milliseconds_per_beat(qpm: float) -> float:
    return 60000.0 / qpm
