"""Canonical join-key maps and label normalization."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping

import pandas as pd
import yaml


@dataclass(frozen=True, slots=True)
class KeyMap:
    """Fixed mapping from raw entity labels to the geometry source's spelling.

    Unmapped labels pass through unchanged. Chains (a canonical label that is
    itself a raw key pointing elsewhere) are rejected so that normalizing twice
    equals normalizing once.
    """

    name: str
    entries: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for raw, canonical in self.entries.items():
            target = self.entries.get(canonical)
            if target is not None and target != canonical:
                raise ValueError(
                    f"Key map '{self.name}' chains '{raw}' -> '{canonical}' -> '{target}'"
                )

    def normalize(self, label: Any) -> Any:
        if not isinstance(label, str):
            return label
        return self.entries.get(label.strip(), label.strip())

    def __len__(self) -> int:
        return len(self.entries)

    @classmethod
    def from_mapping(cls, name: str, data: Mapping[str, Any]) -> KeyMap:
        entries: dict[str, str] = {}
        for raw, canonical in data.items():
            if not isinstance(raw, str) or not raw.strip():
                raise ValueError(f"Key map '{name}' has a non-string or empty key: {raw!r}")
            if not isinstance(canonical, str) or not canonical.strip():
                raise ValueError(f"Key map '{name}' has an invalid value for '{raw}'")
            entries[raw.strip()] = canonical.strip()
        return cls(name=name, entries=entries)


IDENTITY = KeyMap(name="identity")


def load_key_maps(path: Path) -> dict[str, KeyMap]:
    """Load every named key map from one YAML file."""
    if not path.exists():
        raise FileNotFoundError(f"Key map file not found: {path}")
    with path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"Expected mapping in {path}")

    maps: dict[str, KeyMap] = {}
    for name, value in raw.items():
        if not isinstance(name, str):
            raise ValueError(f"Key map names must be strings in {path}")
        if value is None:
            value = {}
        if not isinstance(value, dict):
            raise ValueError(f"Key map '{name}' must be a mapping in {path}")
        maps[name] = KeyMap.from_mapping(name, value)
    return maps


def normalize_keys(frame: pd.DataFrame, column: str, key_map: KeyMap) -> pd.DataFrame:
    """Return a copy of the frame with `column` rewritten to canonical labels."""
    out = frame.copy()
    out[column] = out[column].map(key_map.normalize)
    return out


def unmatched_keys(frame: pd.DataFrame, column: str, canonical: Iterable[Any]) -> list[str]:
    """Labels in `column` that have no counterpart in the canonical key set."""
    known = {str(item) for item in canonical}
    labels = {str(item) for item in frame[column].dropna().tolist()}
    return sorted(labels - known)
