"""Static rule table turning current conditions into clothing guidance.

Bands and condition groups mirror the Open-Meteo WMO descriptions. The output
uses the wardrobe's own vocabulary: ``avoid_categories`` / ``required_categories``
are item categories, ``avoid_types`` are subcategories and ``avoid_materials``
are compared against item material.
"""
from typing import Any, Dict, List

HOT_ABOVE_C = 30.0
COLD_BELOW_C = 10.0
COOL_BELOW_C = 18.0
HUMID_ABOVE = 80.0

RAIN = {
    "slight_rain",
    "moderate_rain",
    "heavy_rain",
    "slight_rain_showers",
    "moderate_rain_showers",
    "violent_rain_showers",
    "light_drizzle",
    "moderate_drizzle",
    "dense_drizzle",
    "light_freezing_drizzle",
    "dense_freezing_drizzle",
    "light_freezing_rain",
    "heavy_freezing_rain",
}
STORM = {"thunderstorm", "thunderstorm_with_slight_hail", "thunderstorm_with_heavy_hail"}
SNOW = {"slight_snow_fall", "moderate_snow_fall", "heavy_snow_fall", "snow_grains", "slight_snow_showers", "heavy_snow_showers"}
FOG = {"foggy", "depositing_rime_fog"}

BANDS: Dict[str, Dict[str, Any]] = {
    "hot": {
        "advice": "It's hot! Choose lightweight, breathable fabrics.",
        "recommended_types": ["shorts", "tank_top", "sundress", "sandals"],
        "avoid_categories": ["outerwear"],
        "avoid_types": ["sweater", "hoodie", "boots", "coat"],
        "materials": ["cotton", "linen", "bamboo"],
        "avoid_materials": ["wool", "cashmere", "fleece", "down"],
        "colors": ["light", "white", "pastel"],
        "required_categories": [],
    },
    "cold": {
        "advice": "It's cold! Layer up with warm clothing.",
        "recommended_types": ["coat", "sweater", "trousers", "boots", "gloves"],
        "avoid_categories": [],
        "avoid_types": ["shorts", "tank_top", "sandals"],
        "materials": ["wool", "cashmere", "down", "fleece"],
        "avoid_materials": ["linen"],
        "colors": ["dark", "earth"],
        "required_categories": ["outerwear"],
    },
    "cool": {
        "advice": "Cool weather - perfect for layering.",
        "recommended_types": ["jacket", "long_sleeve", "jeans", "sneakers"],
        "avoid_categories": [],
        "avoid_types": ["shorts", "tank_top"],
        "materials": ["cotton", "denim", "wool"],
        "avoid_materials": [],
        "colors": ["neutral", "autumn"],
        "required_categories": [],
    },
    "mild": {
        "advice": "Mild weather - versatile clothing options.",
        "recommended_types": ["t_shirt", "light_sweater", "jeans", "sneakers"],
        "avoid_categories": [],
        "avoid_types": [],
        "materials": ["cotton", "linen"],
        "avoid_materials": [],
        "colors": ["any"],
        "required_categories": [],
    },
}

CONDITIONS: Dict[str, Dict[str, Any]] = {
    "rainy": {
        "advice": "Rain expected - choose water-resistant options.",
        "recommended_types": ["rain_jacket", "waterproof_shoes"],
        "avoid_types": ["sandals", "suede_shoes"],
        "materials": ["waterproof", "gore_tex", "rubber"],
        "avoid_materials": ["suede", "silk"],
        "required_categories": ["outerwear"],
    },
    "stormy": {
        "advice": "Stormy weather - avoid loose items and choose secure clothing.",
        "recommended_types": [],
        "avoid_types": ["hat", "maxi_dress"],
        "materials": [],
        "avoid_materials": ["silk"],
        "required_categories": ["outerwear"],
    },
    "snowy": {
        "advice": "Snow on the ground - insulated, waterproof footwear.",
        "recommended_types": ["boots", "coat"],
        "avoid_types": ["sandals", "sneakers"],
        "materials": ["wool", "down", "waterproof"],
        "avoid_materials": ["suede"],
        "required_categories": ["outerwear"],
    },
    "foggy": {
        "advice": "Low visibility - brighter colors help.",
        "recommended_types": [],
        "avoid_types": [],
        "materials": [],
        "avoid_materials": [],
        "required_categories": [],
    },
}

HUMID = {
    "advice": "High humidity - choose breathable fabrics.",
    "avoid_materials": ["polyester", "nylon", "synthetic"],
    "breathable": ["cotton", "linen", "bamboo"],
}


def temperature_band(temp_c: float) -> str:
    if temp_c > HOT_ABOVE_C:
        return "hot"
    if temp_c < COLD_BELOW_C:
        return "cold"
    if temp_c < COOL_BELOW_C:
        return "cool"
    return "mild"


def condition_for(description: str) -> str | None:
    if description in RAIN:
        return "rainy"
    if description in STORM:
        return "stormy"
    if description in SNOW:
        return "snowy"
    if description in FOG:
        return "foggy"
    return None


def _merge(dst: List[str], src: List[str]) -> None:
    for v in src:
        if v not in dst:
            dst.append(v)


def build_advisory(weather: Dict[str, Any]) -> Dict[str, Any]:
    """Deterministic advisory for a normalized weather payload."""
    temp = float(weather["temperature"])
    humidity = float(weather.get("humidity") or 0.0)
    band = temperature_band(temp)
    rule = BANDS[band]

    advice = [rule["advice"]]
    out: Dict[str, List[str]] = {
        k: list(rule[k])
        for k in (
            "recommended_types",
            "avoid_categories",
            "avoid_types",
            "materials",
            "avoid_materials",
            "colors",
            "required_categories",
        )
    }
    weather_type = "normal" if band == "mild" else band

    condition = condition_for(weather.get("description") or "")
    if condition:
        c = CONDITIONS[condition]
        advice.append(c["advice"])
        weather_type += f"_{condition}"
        for k in ("recommended_types", "avoid_types", "materials", "avoid_materials", "required_categories"):
            _merge(out[k], c[k])

    humid = humidity > HUMID_ABOVE
    if humid:
        advice.append(HUMID["advice"])
        weather_type += "_humid"
        out["materials"] = [m for m in out["materials"] if m in HUMID["breathable"]]
        _merge(out["avoid_materials"], HUMID["avoid_materials"])

    # A category can't be both required and avoided; requirement wins.
    out["avoid_categories"] = [c for c in out["avoid_categories"] if c not in out["required_categories"]]

    return {
        "advice": " ".join(advice),
        "band": band,
        "condition": condition,
        "humid": humid,
        "weather_type": weather_type,
        "temperature": temp,
        **out,
    }
