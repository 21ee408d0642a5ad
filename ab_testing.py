# ab_testing.py
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from errors import NoActiveTest

# Hashes are folded into this many buckets before being mapped onto weights
BUCKET_RESOLUTION = 10000

_INT32_MASK = 0xFFFFFFFF
_INT32_SIGN = 0x80000000


class Variant(BaseModel):
    id: str
    name: str = ""
    weight: float = Field(gt=0)
    # adType, positions, showInterval, reward
    config: Dict[str, Any] = Field(default_factory=dict)


class ABTest(BaseModel):
    id: str
    name: str = ""
    status: str = "inactive"
    variants: List[Variant] = Field(default_factory=list)
    metrics: List[str] = Field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status == "active"


class AnalyticsSettings(BaseModel):
    enabled: bool = True


class GlobalSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id_cookie: str = Field("ab_user_id", alias="userIdCookie")
    variant_cookie: str = Field("ab_variant", alias="variantCookie")
    cookie_expiration_days: float = Field(30, alias="cookieExpirationDays")
    tracking_endpoint: str = Field("/api/ab-track", alias="trackingEndpoint")
    analytics: AnalyticsSettings = Field(default_factory=AnalyticsSettings)


class ABTestConfig(BaseModel):
    """Experiment configuration document shared by the client and the config endpoints"""
    model_config = ConfigDict(populate_by_name=True)

    active_tests: List[ABTest] = Field(default_factory=list, alias="activeTests")
    global_settings: GlobalSettings = Field(default_factory=GlobalSettings, alias="globalSettings")


def hash_user_id(user_id: str) -> int:
    """
    Rolling 31x hash over the UTF-16 code units of ``user_id``.

    Arithmetic wraps at signed 32 bits so every replica (and the browser
    client) buckets a user identically; the absolute value is returned.
    """
    data = user_id.encode("utf-16-le")
    value = 0
    for i in range(0, len(data), 2):
        code_unit = int.from_bytes(data[i:i + 2], "little")
        value = (value * 31 + code_unit) & _INT32_MASK
    if value & _INT32_SIGN:
        value -= _INT32_MASK + 1
    return abs(value)


def select_variant(hash_value: int, variants: Sequence[Variant]) -> Variant:
    """
    Pick the first variant whose cumulative weight share exceeds the
    normalized hash. Weights are normalized by their total, so 50/50,
    0.5/0.5 and 1/1 all split traffic evenly.
    """
    if not variants:
        raise NoActiveTest("Test has no variants to assign")

    total = sum(variant.weight for variant in variants)
    if total <= 0:
        raise NoActiveTest("Variant weights must sum to a positive number")

    normalized = (hash_value % BUCKET_RESOLUTION) / BUCKET_RESOLUTION

    cumulative = 0.0
    for variant in variants:
        cumulative += variant.weight
        if normalized < cumulative / total:
            return variant

    # Rounding can leave the top bucket uncovered
    return variants[-1]


@dataclass
class ActiveTest:
    """The single test eligible for assignment under a loaded config.

    Only the first test with status ``active`` is considered; running
    several experiments at once is not supported.
    """
    test: ABTest
    variants_by_id: Dict[str, Variant] = field(default_factory=dict)

    @classmethod
    def resolve(cls, tests: Sequence[ABTest]) -> Optional["ActiveTest"]:
        for test in tests:
            if test.is_active:
                return cls(test=test, variants_by_id={v.id: v for v in test.variants})
        return None

    @property
    def id(self) -> str:
        return self.test.id

    def find_variant(self, variant_id: Optional[str]) -> Optional[Variant]:
        if not variant_id:
            return None
        return self.variants_by_id.get(variant_id)

    def assign(self, user_id: str) -> Variant:
        """Consistently assign user to a variant of this test"""
        return select_variant(hash_user_id(user_id), self.test.variants)
