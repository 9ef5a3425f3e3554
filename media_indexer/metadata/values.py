"""
Decoders for loosely typed metadata values.

exiftool reports the same tag as an int, a float, a string or a list
depending on the camera and the file, so each decoder matches every shape it
accepts explicitly and turns anything else into a warning instead of coercing
it silently.
"""
import re
from dataclasses import dataclass
from typing import Any, Optional, Set

_DIGITS = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class Decoded:
    """A decoded value, or a warning explaining why there isn't one."""
    value: Any = None
    warning: Optional[str] = None
    original: Optional[str] = None


def _is_number(raw: Any) -> bool:
    # bool is an int subclass but never a meaningful metadata number
    return isinstance(raw, (int, float)) and not isinstance(raw, bool)


def decode_iso(raw: Any) -> Decoded:
    if raw is None:
        return Decoded()
    if isinstance(raw, bool):
        return Decoded(warning=f"Unexpected ISO type: {type(raw).__name__} ({raw!r})")
    if isinstance(raw, int):
        return Decoded(raw)
    if isinstance(raw, float):
        return Decoded(int(raw))
    if isinstance(raw, str):
        match = _DIGITS.search(raw)
        if match is None:
            return Decoded(warning=f"ISO string ({raw}) failed to convert to an int")
        return Decoded(int(match.group()))
    return Decoded(warning=f"Unexpected ISO type: {type(raw).__name__} ({raw!r})")


def decode_exposure_time(raw: Any) -> Decoded:
    """
    Exposure time arrives as a float or as "1/640" / "5" text.
    The original text is kept for display even when it can't be converted.
    """
    if raw is None:
        return Decoded()
    if _is_number(raw):
        text = str(raw)
    elif isinstance(raw, str):
        text = raw.strip()
    else:
        return Decoded(warning=f"Unexpected ExposureTime type: {type(raw).__name__}")

    seconds = None
    tokens = text.split("/")
    try:
        if len(tokens) == 1:
            seconds = float(tokens[0])
        elif len(tokens) == 2:
            denominator = float(tokens[1])
            if denominator != 0:
                seconds = float(tokens[0]) / denominator
    except ValueError:
        seconds = None

    if seconds is None:
        return Decoded(
            warning=f"Unable to convert ExposureTimeString to decimal: {text}",
            original=text,
        )
    return Decoded(seconds, original=text)


def decode_keywords(raw: Any, source: str) -> Decoded:
    """Keywords may be absent, a single scalar, or a list of scalars."""
    if raw is None:
        return Decoded(set())
    if isinstance(raw, str):
        return Decoded({raw})
    if _is_number(raw):
        # Purely numeric keywords ("2016") come back from exiftool as numbers
        return Decoded({str(raw)})
    if isinstance(raw, list):
        keywords: Set[str] = set()
        rejected = []
        for item in raw:
            if isinstance(item, str):
                keywords.add(item)
            elif _is_number(item):
                keywords.add(str(item))
            else:
                rejected.append(item)
        if rejected:
            return Decoded(keywords, warning=f"Unexpected {source} entries {rejected!r}")
        return Decoded(keywords)
    return Decoded(set(), warning=f"Unexpected {source} type {type(raw).__name__} ({raw!r})")


def decode_focal_length(raw: Any) -> Decoded:
    """Focal length is a string like "23.7 mm"."""
    if raw is None or raw == "":
        return Decoded()
    if _is_number(raw):
        return Decoded(float(raw))
    if not isinstance(raw, str):
        return Decoded(warning=f"Unexpected FocalLength type: {type(raw).__name__} ({raw!r})")

    tokens = raw.split(" ")
    if len(tokens) != 2 or tokens[1] != "mm":
        return Decoded(warning=f"Unexpected format for FocalLength ({raw})")
    try:
        return Decoded(float(tokens[0]))
    except ValueError:
        return Decoded(warning=f"Failed converting FocalLength ({raw}) to a float ({tokens[0]})")


def decode_duration(raw: Any) -> Decoded:
    """Video duration as "0:00:35", "10.15 s" or plain seconds."""
    if raw is None or raw == "":
        return Decoded()
    if _is_number(raw):
        return Decoded(float(raw))
    if not isinstance(raw, str):
        return Decoded(warning=f"Unexpected Duration type: {type(raw).__name__} ({raw!r})")

    try:
        tokens = raw.split(":")
        if len(tokens) == 3:
            hours, minutes, seconds = int(tokens[0]), int(tokens[1]), float(tokens[2])
            return Decoded(float(hours * 3600 + minutes * 60) + seconds)
        return Decoded(float(raw.split(" ")[0]))
    except ValueError:
        return Decoded(warning=f"Unable to parse Duration ({raw})")


def decode_float(raw: Any, name: str) -> Decoded:
    if raw is None or raw == "":
        return Decoded()
    if _is_number(raw):
        return Decoded(float(raw))
    if isinstance(raw, str):
        try:
            return Decoded(float(raw))
        except ValueError:
            return Decoded(warning=f"Unable to convert {name} ({raw}) to a float")
    return Decoded(warning=f"Unexpected {name} type: {type(raw).__name__} ({raw!r})")


def decode_int(raw: Any, name: str) -> Decoded:
    if raw is None or raw == "":
        return Decoded()
    if isinstance(raw, int) and not isinstance(raw, bool):
        return Decoded(raw)
    if isinstance(raw, float):
        return Decoded(int(raw))
    if isinstance(raw, str) and raw.strip().isdigit():
        return Decoded(int(raw.strip()))
    return Decoded(warning=f"Unexpected {name} value: {raw!r}")


def decode_text(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


def dms_to_decimal(dms: str) -> float:
    """
    Converts '47 deg 37' 23.06"' to decimal degrees. A trailing hemisphere
    letter is allowed; S and W make the result negative.
    Raises ValueError for anything else.
    """
    tokens = dms.strip().split()
    sign = 1.0
    if len(tokens) == 5:
        hemisphere = tokens.pop().upper()
        if hemisphere not in ("N", "S", "E", "W"):
            raise ValueError(f"Invalid DMS hemisphere: {dms}")
        if hemisphere in ("S", "W"):
            sign = -1.0
    if len(tokens) != 4 or tokens[1] != "deg":
        raise ValueError(f"Invalid DMS (wrong number of tokens): {dms}")

    degrees = float(tokens[0])
    minutes = float(tokens[2].rstrip("'"))
    seconds = float(tokens[3].rstrip('"'))
    return sign * (degrees + minutes / 60.0 + seconds / 3600.0)
