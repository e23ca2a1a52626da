from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Sequence, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class ClassNames:
    """
    Index -> display name lookup that never fails.

    Indices outside the loaded list resolve to "Class {index}", so a short or
    empty name file only degrades labels.
    """

    def __init__(self, names: Sequence[str] = ()):
        self._names: List[str] = list(names)

    def __len__(self) -> int:
        return len(self._names)

    def name(self, index: int) -> str:
        if 0 <= index < len(self._names):
            return self._names[index]
        return f"Class {index}"

    def names(self) -> List[str]:
        return list(self._names)


def parse_names_text(text: str) -> List[str]:
    """One name per line; blank lines dropped, surrounding whitespace trimmed."""
    return [line.strip() for line in text.splitlines() if line.strip()]


def parse_names_yaml(text: str) -> Dict[int, str]:
    """
    Parse the lightweight metadata format:

        names:
          0: person
          1: bicycle
          ...

    Only the `names:` block is read.
    """

    names: Dict[int, str] = {}
    in_names = False

    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line == "names:":
            in_names = True
            continue
        if not in_names:
            continue

        # Parse "id: label"
        if ":" not in line:
            continue
        left, right = line.split(":", 1)
        left = left.strip()
        right = right.strip().strip("'").strip('"')
        if not left.isdigit():
            continue
        names[int(left)] = right

    return names


def load_class_names(path: PathLike) -> ClassNames:
    """
    Load a `.txt` list (line i is class i) or a `.yaml`/`.yml` `names:` mapping.
    Gaps in a YAML mapping fall back to the default label.
    """

    p = Path(path)
    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() in {".yaml", ".yml"}:
        mapping = parse_names_yaml(text)
        size = max(mapping) + 1 if mapping else 0
        names = ClassNames([mapping.get(i, f"Class {i}") for i in range(size)])
    else:
        names = ClassNames(parse_names_text(text))
    logger.info("Loaded %d class names from %s", len(names), p)
    return names


def load_class_names_or_empty(path: PathLike) -> ClassNames:
    """
    Like `load_class_names` but a missing/unreadable file yields an empty lookup.
    """

    try:
        return load_class_names(path)
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Could not read class names from %s (%s); using numeric labels", path, e)
        return ClassNames()
