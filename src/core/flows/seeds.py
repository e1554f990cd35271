"""Bundled residential inspection flows loaded by ``seed_default_definitions``."""

from typing import Any, Optional


def _photos(description: str, minimum: int, maximum: int, required: bool = True) -> dict:
    return {
        "type": "photo",
        "description": description,
        "is_required": required,
        "min_quantity": minimum,
        "max_quantity": maximum,
    }


def _movement(
    movement_id: str,
    name: str,
    description: str,
    *,
    order: int,
    criticality: str,
    evidence: Optional[list[dict]] = None,
    required: bool = True,
) -> dict[str, Any]:
    return {
        "id": movement_id,
        "name": name,
        "description": description,
        "sequence_order": order,
        "is_required": required,
        "criticality": criticality,
        "evidence_requirements": evidence or [],
    }


def _phase(phase_id: str, name: str, description: str, movements: list[dict]) -> dict[str, Any]:
    return {
        "id": phase_id,
        "name": name,
        "description": description,
        "movements": movements,
        "gate": {"id": f"gate_{phase_id}", "name": f"{name} complete"},
    }


_VERIFY_ADDRESS = _movement(
    "verify_address",
    "Verify Property Address",
    "Confirm the property matches the claim address",
    order=1,
    criticality="high",
    evidence=[_photos("Property exterior with address visible", 1, 3)],
)

WIND_HAIL_RESIDENTIAL = {
    "name": "Wind/Hail Residential Inspection",
    "description": "Standard inspection for wind and hail damage on residential properties",
    "peril_type": "wind_hail",
    "property_type": "residential",
    "flow_json": {
        "phases": [
            _phase(
                "arrival",
                "Arrival & Safety",
                "Arrival, introductions and safety check",
                [
                    _VERIFY_ADDRESS,
                    _movement(
                        "meet_policyholder",
                        "Meet Policyholder",
                        "Introduce yourself and explain the inspection",
                        order=2,
                        criticality="high",
                    ),
                    _movement(
                        "safety_assessment",
                        "Safety Assessment",
                        "Check for hazards before proceeding",
                        order=3,
                        criticality="high",
                        evidence=[
                            {
                                "type": "voice_note",
                                "description": "Safety observations",
                                "is_required": False,
                                "min_quantity": 0,
                                "max_quantity": 1,
                            }
                        ],
                    ),
                ],
            ),
            _phase(
                "exterior_inspection",
                "Exterior Inspection",
                "Document all exterior damage",
                [
                    _movement(
                        "roof_overview",
                        "Roof Overview",
                        "Overall roof condition, every slope",
                        order=1,
                        criticality="high",
                        evidence=[_photos("Roof overview photos", 4, 20)],
                    ),
                    _movement(
                        "gutters_downspouts",
                        "Gutters & Downspouts",
                        "Dents, holes or detachment",
                        order=2,
                        criticality="medium",
                        evidence=[_photos("Gutter damage photos", 2, 10)],
                    ),
                    _movement(
                        "siding_exterior",
                        "Siding & Exterior Walls",
                        "Siding damage on all elevations",
                        order=3,
                        criticality="medium",
                        evidence=[_photos("Siding damage photos", 4, 20)],
                    ),
                ],
            ),
            _phase(
                "interior_inspection",
                "Interior Inspection",
                "Interior damage from water intrusion",
                [
                    _movement(
                        "ceiling_walls",
                        "Ceiling & Wall Damage",
                        "Water stains, cracks or bubbling",
                        order=1,
                        criticality="medium",
                        required=False,
                        evidence=[_photos("Interior damage photos", 0, 20, required=False)],
                    ),
                ],
            ),
            _phase(
                "wrap_up",
                "Wrap Up",
                "Close the inspection and explain next steps",
                [
                    _movement(
                        "review_findings",
                        "Review Findings with Policyholder",
                        "Discuss findings and next steps",
                        order=1,
                        criticality="high",
                    ),
                    _movement(
                        "final_overview",
                        "Final Overview Photos",
                        "Final overview shots of the property",
                        order=2,
                        criticality="low",
                        evidence=[_photos("Final overview photos", 4, 8)],
                    ),
                ],
            ),
        ]
    },
}

WATER_RESIDENTIAL = {
    "name": "Water Damage Residential Inspection",
    "description": "Standard inspection for water damage on residential properties",
    "peril_type": "water",
    "property_type": "residential",
    "flow_json": {
        "phases": [
            _phase(
                "arrival",
                "Arrival & Assessment",
                "Arrival and source identification",
                [
                    _VERIFY_ADDRESS,
                    _movement(
                        "identify_source",
                        "Identify Water Source",
                        "Locate and document the source of intrusion",
                        order=2,
                        criticality="high",
                        evidence=[
                            _photos("Water source photos", 2, 10),
                            {
                                "type": "voice_note",
                                "description": "Source description",
                                "is_required": True,
                                "min_quantity": 1,
                                "max_quantity": 1,
                            },
                        ],
                    ),
                ],
            ),
            _phase(
                "damage_mapping",
                "Damage Mapping",
                "Document every affected area",
                [
                    _movement(
                        "affected_rooms",
                        "Map Affected Rooms",
                        "Identify and document all rooms with water damage",
                        order=1,
                        criticality="high",
                        evidence=[
                            _photos("Room damage photos", 4, 50),
                            {
                                "type": "measurement",
                                "description": "Affected area measurements",
                                "is_required": True,
                                "min_quantity": 1,
                                "max_quantity": 20,
                            },
                        ],
                    ),
                ],
            ),
            _phase(
                "wrap_up",
                "Wrap Up",
                "Close the inspection and discuss mitigation",
                [
                    _movement(
                        "mitigation_status",
                        "Document Mitigation Status",
                        "Mitigation work done or still needed",
                        order=1,
                        criticality="high",
                        evidence=[_photos("Mitigation equipment photos", 0, 10, required=False)],
                    ),
                ],
            ),
        ]
    },
}

DEFAULT_FLOW_DEFINITIONS = (WIND_HAIL_RESIDENTIAL, WATER_RESIDENTIAL)
