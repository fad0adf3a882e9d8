"""Context-dependent sensor performance and reading simulation.

Each sensor in the catalogue has a base true-positive rate, false-positive
rate and cost, plus multiplicative modifier tables for five context
factors (terrain, lighting, weather, concealment, jamming).  The effective
rates are::

    TPR_eff = clamp(base_tpr * prod(tpr modifiers), 0.01, 0.99)
    FPR_eff = clamp(base_fpr * prod(fpr modifiers), 0.01, 0.99)
    cost_eff = ceil(base_cost * prod(cost modifiers))

Contexts are drawn from weighted categorical distributions biased toward
common operating conditions (daylight, clear weather, no jamming).

Typical usage::

    model = SensorModel()
    context = model.generate_context(create_sub_rng(seed, "context-3-4"))
    reading = model.simulate_reading(SensorType.DRONE, True, context, rng)
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from src.core.errors import InvalidParameterError
from src.core.rng import SeededRNG

# JUSTIFIED: keeps both likelihood ratios TPR/FPR and (1-TPR)/(1-FPR)
# finite and bounded by 99.
RATE_MIN: float = 0.01
RATE_MAX: float = 0.99


class SensorType(str, Enum):
    DRONE = "drone"
    SIGINT = "sigint"
    GROUND = "ground"

    @classmethod
    def parse(cls, value: SensorType | str) -> SensorType:
        """Coerce *value* to a sensor type.

        Raises:
            InvalidParameterError: If *value* names no known sensor.
        """
        try:
            return cls(value)
        except ValueError as exc:
            known = ", ".join(s.value for s in cls)
            raise InvalidParameterError(
                f"Unknown sensor type: {value!r} (expected one of {known})"
            ) from exc


class Terrain(str, Enum):
    URBAN = "urban"
    FOREST = "forest"
    DESERT = "desert"
    MOUNTAIN = "mountain"
    OPEN = "open"


class Lighting(str, Enum):
    DAY = "day"
    DUSK = "dusk"
    NIGHT = "night"
    INFRARED = "infrared"


class Weather(str, Enum):
    CLEAR = "clear"
    OVERCAST = "overcast"
    RAIN = "rain"
    FOG = "fog"
    STORM = "storm"


class Concealment(str, Enum):
    NONE = "none"
    LIGHT = "light"
    MODERATE = "moderate"
    HEAVY = "heavy"


class Jamming(str, Enum):
    NONE = "none"
    LIGHT = "light"
    MODERATE = "moderate"
    HEAVY = "heavy"


@dataclass(frozen=True)
class SensorContext:
    """Operating conditions for one observation."""

    terrain: Terrain
    lighting: Lighting
    weather: Weather
    concealment: Concealment
    jamming: Jamming

    def summary(self) -> str:
        return (
            f"{self.terrain.value} terrain, {self.lighting.value} lighting, "
            f"{self.weather.value} weather, {self.concealment.value} concealment, "
            f"{self.jamming.value} jamming"
        )


DEFAULT_CONTEXT = SensorContext(
    terrain=Terrain.OPEN,
    lighting=Lighting.DAY,
    weather=Weather.CLEAR,
    concealment=Concealment.LIGHT,
    jamming=Jamming.NONE,
)


@dataclass(frozen=True)
class ContextModifiers:
    """Multiplier tables for the five context factors.

    A factor whose table is empty (or lacks the drawn value) contributes a
    multiplier of 1.0.
    """

    terrain: dict[Terrain, float] = field(default_factory=dict)
    lighting: dict[Lighting, float] = field(default_factory=dict)
    weather: dict[Weather, float] = field(default_factory=dict)
    concealment: dict[Concealment, float] = field(default_factory=dict)
    jamming: dict[Jamming, float] = field(default_factory=dict)

    def product(self, context: SensorContext) -> float:
        return (
            self.terrain.get(context.terrain, 1.0)
            * self.lighting.get(context.lighting, 1.0)
            * self.weather.get(context.weather, 1.0)
            * self.concealment.get(context.concealment, 1.0)
            * self.jamming.get(context.jamming, 1.0)
        )


@dataclass(frozen=True)
class SensorSpec:
    """Catalogue entry for one sensor type."""

    name: str
    description: str
    base_tpr: float
    base_fpr: float
    base_cost: float
    tpr_modifiers: ContextModifiers
    fpr_modifiers: ContextModifiers
    cost_modifiers: ContextModifiers


@dataclass(frozen=True)
class EffectivePerformance:
    effective_tpr: float
    effective_fpr: float
    effective_cost: int
    context_summary: str


@dataclass(frozen=True)
class SensorReading:
    """Result of one simulated observation.

    Attributes:
        sensor: Sensor that produced the reading.
        result: ``True`` for a positive detection.
        confidence: Display heuristic in ``[0.1, 0.9]``; not used by the
            Bayesian update.
        effective_tpr: True-positive rate used for the draw.
        effective_fpr: False-positive rate used for the draw.
        context: Context the reading was taken under.
        raw_signal: Latent signal strength.
    """

    sensor: SensorType
    result: bool
    confidence: float
    effective_tpr: float
    effective_fpr: float
    context: SensorContext
    raw_signal: float

    @property
    def context_summary(self) -> str:
        return self.context.summary()


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------

SENSOR_CATALOG: dict[SensorType, SensorSpec] = {
    SensorType.DRONE: SensorSpec(
        name="Drone Imagery",
        description="Electro-optical reconnaissance drone",
        base_tpr=0.85,
        base_fpr=0.15,
        base_cost=10,
        tpr_modifiers=ContextModifiers(
            terrain={Terrain.URBAN: 0.9, Terrain.FOREST: 0.7, Terrain.DESERT: 1.1,
                     Terrain.MOUNTAIN: 0.8, Terrain.OPEN: 1.2},
            lighting={Lighting.DAY: 1.0, Lighting.DUSK: 0.8, Lighting.NIGHT: 0.3,
                      Lighting.INFRARED: 0.9},
            weather={Weather.CLEAR: 1.0, Weather.OVERCAST: 0.9, Weather.RAIN: 0.6,
                     Weather.FOG: 0.3, Weather.STORM: 0.2},
            concealment={Concealment.NONE: 1.0, Concealment.LIGHT: 0.8,
                         Concealment.MODERATE: 0.5, Concealment.HEAVY: 0.2},
            jamming={Jamming.NONE: 1.0, Jamming.LIGHT: 0.9, Jamming.MODERATE: 0.7,
                     Jamming.HEAVY: 0.4},
        ),
        fpr_modifiers=ContextModifiers(
            terrain={Terrain.URBAN: 1.3, Terrain.FOREST: 1.1, Terrain.DESERT: 0.8,
                     Terrain.MOUNTAIN: 1.0, Terrain.OPEN: 0.9},
            lighting={Lighting.DAY: 1.0, Lighting.DUSK: 1.2, Lighting.NIGHT: 1.5,
                      Lighting.INFRARED: 1.1},
            weather={Weather.CLEAR: 1.0, Weather.OVERCAST: 1.1, Weather.RAIN: 1.3,
                     Weather.FOG: 1.4, Weather.STORM: 1.6},
            concealment={Concealment.NONE: 1.0, Concealment.LIGHT: 1.1,
                         Concealment.MODERATE: 1.2, Concealment.HEAVY: 1.4},
            jamming={Jamming.NONE: 1.0, Jamming.LIGHT: 1.2, Jamming.MODERATE: 1.4,
                     Jamming.HEAVY: 1.8},
        ),
        cost_modifiers=ContextModifiers(
            terrain={Terrain.URBAN: 1.2, Terrain.FOREST: 1.3, Terrain.DESERT: 0.9,
                     Terrain.MOUNTAIN: 1.4, Terrain.OPEN: 0.8},
            weather={Weather.CLEAR: 1.0, Weather.OVERCAST: 1.1, Weather.RAIN: 1.4,
                     Weather.FOG: 1.5, Weather.STORM: 2.0},
        ),
    ),
    SensorType.SIGINT: SensorSpec(
        name="SIGINT",
        description="Electronic signature detection and analysis",
        base_tpr=0.60,
        base_fpr=0.05,
        base_cost=15,
        tpr_modifiers=ContextModifiers(
            terrain={Terrain.URBAN: 1.2, Terrain.FOREST: 0.8, Terrain.DESERT: 1.0,
                     Terrain.MOUNTAIN: 0.7, Terrain.OPEN: 1.1},
            lighting={Lighting.DAY: 1.0, Lighting.DUSK: 1.0, Lighting.NIGHT: 1.1,
                      Lighting.INFRARED: 1.0},
            weather={Weather.CLEAR: 1.0, Weather.OVERCAST: 1.0, Weather.RAIN: 0.9,
                     Weather.FOG: 1.0, Weather.STORM: 0.7},
            concealment={Concealment.NONE: 1.0, Concealment.LIGHT: 0.9,
                         Concealment.MODERATE: 0.7, Concealment.HEAVY: 0.4},
            jamming={Jamming.NONE: 1.0, Jamming.LIGHT: 0.8, Jamming.MODERATE: 0.5,
                     Jamming.HEAVY: 0.2},
        ),
        fpr_modifiers=ContextModifiers(
            terrain={Terrain.URBAN: 1.5, Terrain.FOREST: 0.8, Terrain.DESERT: 0.7,
                     Terrain.MOUNTAIN: 0.9, Terrain.OPEN: 0.8},
            lighting={Lighting.DAY: 1.0, Lighting.DUSK: 1.0, Lighting.NIGHT: 1.2,
                      Lighting.INFRARED: 1.0},
            weather={Weather.CLEAR: 1.0, Weather.OVERCAST: 1.0, Weather.RAIN: 1.1,
                     Weather.FOG: 1.0, Weather.STORM: 1.4},
            concealment={Concealment.NONE: 1.0, Concealment.LIGHT: 1.1,
                         Concealment.MODERATE: 1.2, Concealment.HEAVY: 1.3},
            jamming={Jamming.NONE: 1.0, Jamming.LIGHT: 1.3, Jamming.MODERATE: 1.6,
                     Jamming.HEAVY: 2.0},
        ),
        cost_modifiers=ContextModifiers(
            terrain={Terrain.URBAN: 1.3, Terrain.FOREST: 1.0, Terrain.DESERT: 0.9,
                     Terrain.MOUNTAIN: 1.2, Terrain.OPEN: 0.8},
            weather={Weather.CLEAR: 1.0, Weather.OVERCAST: 1.0, Weather.RAIN: 1.1,
                     Weather.FOG: 1.0, Weather.STORM: 1.3},
        ),
    ),
    SensorType.GROUND: SensorSpec(
        name="Ground Spotter",
        description="Human and ground-based reconnaissance",
        base_tpr=0.75,
        base_fpr=0.10,
        base_cost=20,
        tpr_modifiers=ContextModifiers(
            terrain={Terrain.URBAN: 1.1, Terrain.FOREST: 0.6, Terrain.DESERT: 0.9,
                     Terrain.MOUNTAIN: 0.7, Terrain.OPEN: 1.2},
            lighting={Lighting.DAY: 1.0, Lighting.DUSK: 0.7, Lighting.NIGHT: 0.4,
                      Lighting.INFRARED: 0.8},
            weather={Weather.CLEAR: 1.0, Weather.OVERCAST: 0.9, Weather.RAIN: 0.5,
                     Weather.FOG: 0.3, Weather.STORM: 0.2},
            concealment={Concealment.NONE: 1.0, Concealment.LIGHT: 0.7,
                         Concealment.MODERATE: 0.4, Concealment.HEAVY: 0.1},
            jamming={Jamming.NONE: 1.0, Jamming.LIGHT: 0.95, Jamming.MODERATE: 0.9,
                     Jamming.HEAVY: 0.8},
        ),
        fpr_modifiers=ContextModifiers(
            terrain={Terrain.URBAN: 1.2, Terrain.FOREST: 1.0, Terrain.DESERT: 0.8,
                     Terrain.MOUNTAIN: 0.9, Terrain.OPEN: 0.7},
            lighting={Lighting.DAY: 1.0, Lighting.DUSK: 1.3, Lighting.NIGHT: 1.8,
                      Lighting.INFRARED: 1.2},
            weather={Weather.CLEAR: 1.0, Weather.OVERCAST: 1.1, Weather.RAIN: 1.4,
                     Weather.FOG: 1.6, Weather.STORM: 1.8},
            concealment={Concealment.NONE: 1.0, Concealment.LIGHT: 1.2,
                         Concealment.MODERATE: 1.4, Concealment.HEAVY: 1.7},
            jamming={Jamming.NONE: 1.0, Jamming.LIGHT: 1.1, Jamming.MODERATE: 1.2,
                     Jamming.HEAVY: 1.3},
        ),
        cost_modifiers=ContextModifiers(
            terrain={Terrain.URBAN: 1.1, Terrain.FOREST: 1.4, Terrain.DESERT: 1.3,
                     Terrain.MOUNTAIN: 1.5, Terrain.OPEN: 0.9},
            weather={Weather.CLEAR: 1.0, Weather.OVERCAST: 1.1, Weather.RAIN: 1.5,
                     Weather.FOG: 1.4, Weather.STORM: 2.2},
        ),
    ),
}

# Categorical weights for context draws, in enum declaration order.
_TERRAIN_WEIGHTS = [0.2, 0.2, 0.2, 0.2, 0.2]
_LIGHTING_WEIGHTS = [0.4, 0.2, 0.2, 0.2]
_WEATHER_WEIGHTS = [0.4, 0.25, 0.15, 0.1, 0.1]
_CONCEALMENT_WEIGHTS = [0.3, 0.3, 0.25, 0.15]
_JAMMING_WEIGHTS = [0.5, 0.25, 0.15, 0.1]


class SensorModel:
    """Effective sensor rates, context draws and reading simulation.

    Args:
        catalog: Sensor catalogue; defaults to :data:`SENSOR_CATALOG`.
    """

    def __init__(self, catalog: dict[SensorType, SensorSpec] | None = None) -> None:
        self.catalog = catalog or SENSOR_CATALOG
        logger.debug(
            "SensorModel initialised with sensors: {}",
            [s.value for s in self.catalog],
        )

    def spec(self, sensor: SensorType | str) -> SensorSpec:
        """Catalogue entry for *sensor*.

        Raises:
            InvalidParameterError: If the sensor type is unknown.
        """
        sensor_type = SensorType.parse(sensor)
        try:
            return self.catalog[sensor_type]
        except KeyError as exc:
            raise InvalidParameterError(f"Unknown sensor type: {sensor!r}") from exc

    def effective_performance(
        self,
        sensor: SensorType | str,
        context: SensorContext,
    ) -> EffectivePerformance:
        """Apply the context modifiers to a sensor's base rates and cost."""
        spec = self.spec(sensor)

        tpr = spec.base_tpr * spec.tpr_modifiers.product(context)
        fpr = spec.base_fpr * spec.fpr_modifiers.product(context)
        cost = spec.base_cost * spec.cost_modifiers.product(context)

        return EffectivePerformance(
            effective_tpr=min(RATE_MAX, max(RATE_MIN, tpr)),
            effective_fpr=min(RATE_MAX, max(RATE_MIN, fpr)),
            # Round away float noise before the ceiling, e.g. 10 * 1.1 = 11.000000000000002.
            effective_cost=int(math.ceil(round(cost, 9))),
            context_summary=context.summary(),
        )

    @staticmethod
    def generate_context(rng: SeededRNG) -> SensorContext:
        """Draw a context from the weighted categorical distributions."""
        return SensorContext(
            terrain=rng.weighted_choice(list(Terrain), _TERRAIN_WEIGHTS),
            lighting=rng.weighted_choice(list(Lighting), _LIGHTING_WEIGHTS),
            weather=rng.weighted_choice(list(Weather), _WEATHER_WEIGHTS),
            concealment=rng.weighted_choice(list(Concealment), _CONCEALMENT_WEIGHTS),
            jamming=rng.weighted_choice(list(Jamming), _JAMMING_WEIGHTS),
        )

    def simulate_reading(
        self,
        sensor: SensorType | str,
        present: bool,
        context: SensorContext,
        rng: SeededRNG,
    ) -> SensorReading:
        """Simulate one observation of a cell.

        The detection is ``Bernoulli(TPR_eff)`` when the entity is present
        and ``Bernoulli(FPR_eff)`` otherwise.  Confidence blends the base
        detection (or rejection) rate with the latent signal magnitude.
        """
        performance = self.effective_performance(sensor, context)

        raw_signal = rng.normal(1.0 if present else 0.0, 0.3)
        rate = performance.effective_tpr if present else performance.effective_fpr
        result = rng.bernoulli(rate)

        base_confidence = (
            performance.effective_tpr if present else 1.0 - performance.effective_fpr
        )
        signal_confidence = abs(raw_signal) / 2.0
        confidence = min(0.9, max(0.1, (base_confidence + signal_confidence) / 2.0))

        return SensorReading(
            sensor=SensorType.parse(sensor),
            result=result,
            confidence=confidence,
            effective_tpr=performance.effective_tpr,
            effective_fpr=performance.effective_fpr,
            context=context,
            raw_signal=raw_signal,
        )
