"""Map raw analyzer output onto the canonical feature set.

The analyzer writes one of two JSON shapes depending on its version:

* flat dotted keys, e.g. ``{"rhythm.bpm": 120.0, "lowlevel.average_loudness": 0.8}``
* nested objects, e.g. ``{"rhythm": {"bpm": 120.0}, "lowlevel": {...}}``

Each shape has its own parse strategy. Flat keys are always read first;
when :func:`select_strategy` picks the nested shape, its sections are laid
over the flat reading. The derived perceptual values (energy, acousticness,
valence) are computed from the merged descriptors.
"""

from __future__ import annotations

import json
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Mapping, Optional, Tuple

from ..exceptions import MalformedOutputError
from ..models.track import FeatureSet

logger = logging.getLogger(__name__)

DANCEABILITY_SCALE = 3.0


@dataclass(frozen=True, slots=True)
class RawDescriptors:
    """Low-level descriptors pulled out of analyzer output."""
    loudness: float = 0.0
    dynamic_complexity: float = 0.0
    spectral_centroid: float = 0.0
    spectral_energy: float = 0.0
    dissonance: float = 0.0
    zero_crossing_rate: float = 0.0
    tempo: float = 0.0
    danceability: float = 0.0
    key: Optional[str] = None
    scale: Optional[str] = None


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _coerce_number(value: Any, field: str) -> float:
    """Turn a JSON value into a float, or fail with MalformedOutputError."""
    if value is None:
        return 0.0
    if isinstance(value, bool):
        raise MalformedOutputError(f"{field} is a boolean, expected a number")
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            raise MalformedOutputError(f"{field} is not numeric: {value!r}") from None
    else:
        raise MalformedOutputError(f"{field} has unexpected type {type(value).__name__}")

    if not math.isfinite(number):
        raise MalformedOutputError(f"{field} is not finite: {value!r}")
    return number


def _coerce_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class ParseStrategy(ABC):
    """Extracts :class:`RawDescriptors` from one analyzer output shape."""

    name: str = ""

    @abstractmethod
    def extract(self, raw: Mapping[str, Any], base: Optional[RawDescriptors] = None) -> RawDescriptors:
        """Read descriptors from ``raw``; fields this shape does not carry keep their ``base`` value."""
        ...


class FlatKeyStrategy(ParseStrategy):
    """Output with dotted keys such as ``"rhythm.bpm"``."""

    name = "flat"

    def number(self, raw: Mapping[str, Any], key: str) -> float:
        value = raw.get(key)
        if isinstance(value, list):
            # Frame-wise descriptors: the first frame stands in for the track
            value = value[0] if value else None
        return _coerce_number(value, key)

    def extract(self, raw: Mapping[str, Any], base: Optional[RawDescriptors] = None) -> RawDescriptors:
        key, scale = self._key(raw)
        return RawDescriptors(
            loudness=self.number(raw, "lowlevel.average_loudness"),
            dynamic_complexity=self.number(raw, "lowlevel.dynamic_complexity"),
            spectral_centroid=self.number(raw, "lowlevel.spectral_centroid.mean"),
            spectral_energy=self.number(raw, "lowlevel.spectral_energy.mean"),
            dissonance=self.number(raw, "lowlevel.dissonance.mean"),
            zero_crossing_rate=self.number(raw, "lowlevel.zerocrossingrate.mean"),
            tempo=self.number(raw, "rhythm.bpm"),
            danceability=self.number(raw, "rhythm.danceability"),
            key=key,
            scale=scale,
        )

    @staticmethod
    def _key(raw: Mapping[str, Any]) -> Tuple[Optional[str], Optional[str]]:
        for key_field, scale_field in (
            ("tonal.key_krumhansl.key", "tonal.key_krumhansl.scale"),
            ("tonal.key_edma.key", "tonal.key_edma.scale"),
            ("tonal.chords_key", "tonal.chords_scale"),
        ):
            key = _coerce_text(raw.get(key_field))
            if key:
                return key, _coerce_text(raw.get(scale_field))
        return None, None


class NestedObjectStrategy(ParseStrategy):
    """Output with nested objects such as ``{"rhythm": {"bpm": ...}}``.

    Each of the ``rhythm``, ``lowlevel`` and ``tonal`` sections replaces the
    matching ``base`` fields only when the section is present.
    """

    name = "nested"

    @staticmethod
    def _section(raw: Mapping[str, Any], name: str) -> Optional[Mapping[str, Any]]:
        section = raw.get(name)
        if section is None:
            return None
        if not isinstance(section, dict):
            raise MalformedOutputError(f"{name} is not an object")
        return section

    @staticmethod
    def _statistic(section: Mapping[str, Any], name: str) -> float:
        """A statistics block contributes its mean; a bare number is used as is."""
        value = section.get(name)
        if isinstance(value, dict):
            value = value.get("mean")
        return _coerce_number(value, name)

    def extract(self, raw: Mapping[str, Any], base: Optional[RawDescriptors] = None) -> RawDescriptors:
        descriptors = base or RawDescriptors()

        rhythm = self._section(raw, "rhythm")
        if rhythm is not None:
            descriptors = replace(
                descriptors,
                tempo=_coerce_number(rhythm.get("bpm"), "bpm"),
                danceability=_coerce_number(rhythm.get("danceability"), "danceability"),
            )

        lowlevel = self._section(raw, "lowlevel")
        if lowlevel is not None:
            descriptors = replace(
                descriptors,
                loudness=_coerce_number(lowlevel.get("average_loudness"), "average_loudness"),
                dynamic_complexity=_coerce_number(lowlevel.get("dynamic_complexity"), "dynamic_complexity"),
                spectral_centroid=self._statistic(lowlevel, "spectral_centroid"),
                spectral_energy=self._statistic(lowlevel, "spectral_energy"),
                dissonance=self._statistic(lowlevel, "dissonance"),
                zero_crossing_rate=self._statistic(lowlevel, "zerocrossingrate"),
            )

        tonal = self._section(raw, "tonal")
        if tonal is not None:
            key = scale = None
            for block_name in ("key_krumhansl", "key_edma"):
                block = tonal.get(block_name)
                if not isinstance(block, dict):
                    continue
                key = key or _coerce_text(block.get("key"))
                scale = scale or _coerce_text(block.get("scale"))
            descriptors = replace(descriptors, key=key, scale=scale)

        return descriptors


FLAT_KEYS = FlatKeyStrategy()
NESTED_OBJECTS = NestedObjectStrategy()


def select_strategy(raw: Mapping[str, Any]) -> ParseStrategy:
    """Flat keys unless both flat loudness and flat tempo read exactly zero.

    When nested objects are selected they are laid over the flat reading, so
    flat values survive wherever no nested section exists.
    """
    if FLAT_KEYS.number(raw, "lowlevel.average_loudness") == 0 and FLAT_KEYS.number(raw, "rhythm.bpm") == 0:
        return NESTED_OBJECTS
    return FLAT_KEYS


def rescale_danceability(value: float) -> float:
    """Some analyzer versions report danceability on a 0..3 scale."""
    if value > 1:
        value = value / DANCEABILITY_SCALE
    return clamp(value, 0.0, 1.0)


def map_energy(loudness: float, dynamic_complexity: float, spectral_energy: float) -> float:
    loudness_component = clamp(loudness, 0.0, 1.0)
    dynamic_component = clamp(dynamic_complexity / 10.0, 0.0, 1.0)
    energy_component = clamp(math.log10(spectral_energy + 1) / 10.0, 0.0, 1.0) if spectral_energy > 0 else 0.0
    return clamp(0.4 * loudness_component + 0.3 * dynamic_component + 0.3 * energy_component, 0.0, 1.0)


def map_acousticness(spectral_centroid: float, zero_crossing_rate: float, dissonance: float) -> float:
    centroid_component = 1 - clamp((spectral_centroid - 500) / 3500.0, 0.0, 1.0)
    zcr_component = 1 - clamp(zero_crossing_rate * 10, 0.0, 1.0)
    dissonance_component = 1 - clamp(dissonance, 0.0, 1.0)
    return clamp(
        0.4 * centroid_component + 0.3 * zcr_component + 0.3 * dissonance_component, 0.0, 1.0
    )


def map_valence(scale: Optional[str], spectral_centroid: float) -> float:
    """Major keys lift valence, minor keys lower it, brighter spectra lift it a little."""
    valence = 0.5
    if scale:
        if scale.lower() == "major":
            valence += 0.15
        elif scale.lower() == "minor":
            valence -= 0.15

    if spectral_centroid > 0:
        valence += clamp((spectral_centroid - 1500) / 3000.0, -0.15, 0.15)

    return clamp(valence, 0.0, 1.0)


def normalize_features(raw: Any, analyzed_at: Optional[datetime] = None) -> FeatureSet:
    """Convert parsed analyzer JSON into a :class:`FeatureSet`.

    Raises:
        MalformedOutputError: If the root is not an object or a headline
            value cannot be read as a number.
    """
    if not isinstance(raw, dict):
        raise MalformedOutputError(f"Analyzer output root is {type(raw).__name__}, expected an object")

    strategy = select_strategy(raw)
    descriptors = FLAT_KEYS.extract(raw)
    if strategy is not FLAT_KEYS:
        descriptors = strategy.extract(raw, descriptors)

    key = None
    if descriptors.key:
        key = f"{descriptors.key} {descriptors.scale or ''}".strip()

    features = FeatureSet(
        energy=map_energy(descriptors.loudness, descriptors.dynamic_complexity, descriptors.spectral_energy),
        valence=map_valence(descriptors.scale, descriptors.spectral_centroid),
        danceability=rescale_danceability(descriptors.danceability),
        acousticness=map_acousticness(
            descriptors.spectral_centroid, descriptors.zero_crossing_rate, descriptors.dissonance
        ),
        tempo=descriptors.tempo,
        key=key,
        analyzed_at=analyzed_at or FeatureSet.now(),
    )
    logger.debug(
        f"Parsed {strategy.name} output: energy={features.energy:.2f} valence={features.valence:.2f} "
        f"dance={features.danceability:.2f} tempo={features.tempo:.0f}"
    )
    return features


def parse_analyzer_output(text: str, analyzed_at: Optional[datetime] = None) -> FeatureSet:
    """Parse the analyzer's JSON text and normalize it."""
    try:
        raw = json.loads(text)
    except ValueError as e:
        raise MalformedOutputError(f"Analyzer output is not valid JSON: {e}") from e
    return normalize_features(raw, analyzed_at)
