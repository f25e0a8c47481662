"""
Reduction of a set of detections to one overall risk.

Every detected object is looked up in a fixed hazard table; the overall level
is the maximum severity found and the description lists every hazard at that
level. Objects missing from the table carry no risk.
"""
from dataclasses import dataclass
from typing import Iterable, Mapping

from src.alwayscare.domain.enums import RiskLevel
from src.alwayscare.domain.value_objects import AnalysisResult, AssessedDetection, Detection, ImageInfo


SAFE_DESCRIPTION = "Safe environment detected - no immediate hazards found"
UNKNOWN_OBJECT_DESCRIPTION = "Unknown object"


@dataclass(frozen=True)
class Hazard:
    risk: RiskLevel
    description: str


HAZARDS: dict[str, Hazard] = {
    # water
    "water": Hazard(RiskLevel.HIGH, "Water hazard - potential drowning risk"),
    "pool": Hazard(RiskLevel.HIGH, "Swimming pool - supervision required"),
    "bathtub": Hazard(RiskLevel.MEDIUM, "Bathtub with water - drowning risk"),
    "sink": Hazard(RiskLevel.LOW, "Water in sink - minor risk"),
    # fire
    "fire": Hazard(RiskLevel.HIGH, "Fire hazard - immediate danger"),
    "stove": Hazard(RiskLevel.MEDIUM, "Hot stove - burn risk"),
    "candle": Hazard(RiskLevel.MEDIUM, "Open flame - fire hazard"),
    "lighter": Hazard(RiskLevel.HIGH, "Lighter - fire hazard"),
    # sharp objects
    "knife": Hazard(RiskLevel.HIGH, "Sharp knife - cut risk"),
    "scissors": Hazard(RiskLevel.MEDIUM, "Sharp scissors - injury risk"),
    "razor": Hazard(RiskLevel.HIGH, "Sharp razor - cut risk"),
    # electrical
    "electrical_outlet": Hazard(RiskLevel.HIGH, "Electrical outlet - shock risk"),
    "power_cord": Hazard(RiskLevel.MEDIUM, "Power cord - electrical hazard"),
    "appliance": Hazard(RiskLevel.MEDIUM, "Electrical appliance - shock risk"),
    # heights and falls
    "stairs": Hazard(RiskLevel.MEDIUM, "Stairs - fall risk"),
    "balcony": Hazard(RiskLevel.HIGH, "Balcony - fall risk"),
    "window": Hazard(RiskLevel.MEDIUM, "Open window - fall risk"),
    # traffic
    "road": Hazard(RiskLevel.HIGH, "Road - traffic hazard"),
    "car": Hazard(RiskLevel.MEDIUM, "Vehicle - traffic hazard"),
    "bicycle": Hazard(RiskLevel.LOW, "Bicycle - minor traffic risk"),
    # chemicals and medicine
    "medicine": Hazard(RiskLevel.HIGH, "Medicine - poisoning risk"),
    "cleaning_supplies": Hazard(RiskLevel.MEDIUM, "Cleaning supplies - chemical hazard"),
    "pills": Hazard(RiskLevel.HIGH, "Pills - poisoning risk"),
    "poison": Hazard(RiskLevel.CRITICAL, "Poison - acute poisoning danger"),
    # weapons
    "gun": Hazard(RiskLevel.CRITICAL, "Firearm - critical danger"),
    "firearm": Hazard(RiskLevel.CRITICAL, "Firearm - critical danger"),
    # choking
    "small_object": Hazard(RiskLevel.MEDIUM, "Small object - choking hazard"),
    "coin": Hazard(RiskLevel.MEDIUM, "Coin - choking hazard"),
    "button": Hazard(RiskLevel.LOW, "Small button - minor choking risk"),
}


def hazard_for(name: str, hazards: Mapping[str, Hazard] = HAZARDS) -> Hazard | None:
    return hazards.get(name.strip().lower())


def risk_level_of(detections: Iterable[Detection], hazards: Mapping[str, Hazard] = HAZARDS) -> RiskLevel:
    level = RiskLevel.NONE
    for d in detections:
        h = hazard_for(d.name, hazards)
        if h and h.risk > level:
            level = h.risk
    return level


def assess(
    detections: Iterable[Detection],
    image_info: ImageInfo | None = None,
    hazards: Mapping[str, Hazard] = HAZARDS,
) -> AnalysisResult:
    detections = list(detections)
    assessed: list[AssessedDetection] = []
    for d in detections:
        h = hazard_for(d.name, hazards)
        assessed.append(
            AssessedDetection(
                name=d.name,
                confidence=d.confidence,
                risk_level=h.risk if h else RiskLevel.NONE,
                description=h.description if h else UNKNOWN_OBJECT_DESCRIPTION,
            )
        )

    level = risk_level_of(detections, hazards)
    if level == RiskLevel.NONE:
        description = SAFE_DESCRIPTION
    else:
        lines: list[str] = []
        for a in assessed:
            if a.risk_level >= level and a.description not in lines:
                lines.append(a.description)
        description = "\n".join(lines)

    return AnalysisResult(
        detections=assessed,
        risk_level=level,
        risk_description=description,
        image_info=image_info,
    )
