# taxonomy_markers.py
# ------------------------------------------------------------
# Pure-data module (no DB access, no app import)
# ------------------------------------------------------------
# Special-case specialties/subspecialties are tagged once, when records are
# loaded from the store. The scope resolver only ever looks at the tag.
#
# Names are compared after lowercasing and collapsing whitespace. Each table
# entry is either an exact name or a compiled pattern searched in the name;
# add synonyms here, not in the resolver.
# ------------------------------------------------------------
import enum
import re


class SpecialtyMarker(enum.Enum):
    NONE = "none"
    # subspecialty meaning "no narrower scope"
    GENERALIST = "generalist"
    # umbrella specialty whose generalists see every subspecialty under it
    ORTHOPAEDIC_SURGERY = "orthopaedic_surgery"
    # specialty without subspecialty data, borrows FOOT_AND_ANKLE
    NO_SUBSPECIALTY_DATA = "no_subspecialty_data"
    FOOT_AND_ANKLE = "foot_and_ankle"


SPECIALTY_MARKER_NAMES = {
    SpecialtyMarker.ORTHOPAEDIC_SURGERY: (
        "orthopaedic surgery",
        "orthopedic surgery",
        re.compile(r"\borthopa?edic"),
    ),
    SpecialtyMarker.NO_SUBSPECIALTY_DATA: ("podiatry",),
}

SUBSPECIALTY_MARKER_NAMES = {
    SpecialtyMarker.GENERALIST: (
        "generalist",
        # General Orthopedics, General Orthopaedic Surgery, ...
        re.compile(r"^general\b.*\borthop"),
    ),
    SpecialtyMarker.FOOT_AND_ANKLE: ("foot and ankle",),
}

_WS_RE = re.compile(r"\s+")


def normalize_name(name: str | None) -> str:
    return _WS_RE.sub(" ", (name or "").strip()).lower()


def _matches(entry, key: str) -> bool:
    if isinstance(entry, re.Pattern):
        return entry.search(key) is not None
    return entry == key


def _lookup(table: dict, name: str | None) -> SpecialtyMarker:
    key = normalize_name(name)
    if not key:
        return SpecialtyMarker.NONE
    for marker, entries in table.items():
        if any(_matches(entry, key) for entry in entries):
            return marker
    return SpecialtyMarker.NONE


def classify_specialty(name: str | None) -> SpecialtyMarker:
    return _lookup(SPECIALTY_MARKER_NAMES, name)


def classify_subspecialty(name: str | None) -> SpecialtyMarker:
    return _lookup(SUBSPECIALTY_MARKER_NAMES, name)
