"""
Tour guide tools backed by Google Maps.
Attractions, directions, dining and transport comparisons.
"""
import re
from typing import Optional

import structlog

from ...places import PlacesError, calculate_distance
from ..registry import tool_registry

logger = structlog.get_logger()

NOT_CONFIGURED = (
    "Google Maps API key not configured. "
    "Please add GOOGLE_MAPS_API_KEY to your environment variables."
)

# Spoken mode -> Directions API travel mode
TRAVEL_MODES = {
    "walking": "walking",
    "driving": "driving",
    "transit": "transit",
    "cycling": "bicycling",
}

MODE_EMOJI = {
    "walking": "🚶",
    "driving": "🚗",
    "transit": "🚌",
    "cycling": "🚲",
}

TRANSPORT_OPTIONS = [
    ("walking", "🚶", "Walking"),
    ("driving", "🚗", "Driving"),
    ("transit", "🚌", "Public Transit"),
    ("bicycling", "🚲", "Cycling"),
]

_HTML_TAG = re.compile(r"<[^>]*>")


def _places_ready(ctx) -> bool:
    return ctx.places is not None and getattr(ctx.places, "configured", True)


def _distance_text(lat: float, lng: float, place: dict) -> str:
    location = (place.get("geometry") or {}).get("location") or {}
    if "lat" not in location or "lng" not in location:
        return ""
    km = calculate_distance(lat, lng, location["lat"], location["lng"])
    return f" - {km:.1f}km away"


def _with_tips(body: str, tips: list[str]) -> str:
    if not tips:
        return body
    return body + "\n\nTips:\n" + "\n".join(f"- {tip}" for tip in tips)


@tool_registry.register(
    description="Get nearby tourist attractions and points of interest",
    parameters={
        "type": "object",
        "properties": {
            "location": {"type": "string", "description": "The location to search attractions near"},
            "radius": {"type": "number", "description": "Search radius in kilometers (default: 5)"},
        },
        "required": ["location"],
    },
    category="places",
)
async def get_nearby_attractions(ctx, location: str, radius: Optional[float] = 5) -> str:
    if not _places_ready(ctx):
        return NOT_CONFIGURED
    radius = float(radius) if radius else 5.0

    try:
        coords = await ctx.places.geocode(location)
        if coords is None:
            return f'Location "{location}" not found. Please check the spelling and try again.'
        lat, lng = coords
        places = await ctx.places.places_nearby(lat, lng, int(radius * 1000), "tourist_attraction")
    except PlacesError as e:
        logger.error("attractions_lookup_failed", location=location, error=str(e))
        return f"Unable to get attractions for {location}. Please try again later."

    lines = []
    for index, place in enumerate(places[:8], start=1):
        rating = f" ⭐ {place['rating']}" if place.get("rating") else ""
        price = f" {'💰' * int(place['price_level'])}" if place.get("price_level") else ""
        lines.append(f"{index}. {place.get('name', 'Unnamed place')}{rating}{price}{_distance_text(lat, lng, place)}")

    if not lines:
        return f"No tourist attractions found near {location} within {radius:g}km radius."

    body = f"🏛️ Top attractions near {location} (within {radius:g}km):\n" + "\n".join(lines)
    return _with_tips(body, ["Ask me for directions to any of these places."])


@tool_registry.register(
    description="Get directions between two locations",
    parameters={
        "type": "object",
        "properties": {
            "from": {"type": "string", "description": "Starting location"},
            "to": {"type": "string", "description": "Destination location"},
            "mode": {
                "type": "string",
                "description": "Transportation mode: walking, driving, transit, cycling",
                "enum": ["walking", "driving", "transit", "cycling"],
            },
        },
        "required": ["from", "to"],
    },
    category="places",
    aliases={"from": "origin", "to": "destination"},
)
async def get_directions(ctx, origin: str, destination: str, mode: Optional[str] = "walking") -> str:
    if not _places_ready(ctx):
        return NOT_CONFIGURED
    mode = mode if mode in TRAVEL_MODES else "walking"

    try:
        routes = await ctx.places.directions(origin, destination, TRAVEL_MODES[mode])
    except PlacesError as e:
        logger.error("directions_lookup_failed", origin=origin, destination=destination, error=str(e))
        return f"Unable to get directions from {origin} to {destination}. Please check the locations and try again."

    if not routes or not routes[0].get("legs"):
        return f"No routes found from {origin} to {destination} for {mode} mode."

    leg = routes[0]["legs"][0]
    all_steps = leg.get("steps") or []
    steps = []
    for index, step in enumerate(all_steps[:6], start=1):
        instruction = _HTML_TAG.sub("", step.get("html_instructions", ""))
        distance = (step.get("distance") or {}).get("text", "")
        steps.append(f"{index}. {instruction} ({distance})")

    body = (
        f"{MODE_EMOJI[mode]} Directions from {origin} to {destination} ({mode}):\n"
        f"📍 Distance: {(leg.get('distance') or {}).get('text', 'unknown')}\n"
        f"⏱️ Duration: {(leg.get('duration') or {}).get('text', 'unknown')}\n\n"
        f"Step-by-step directions:\n" + "\n".join(steps)
    )
    if len(steps) < len(all_steps):
        body += f"\n... and {len(all_steps) - len(steps)} more steps"

    tips = []
    if mode == "walking":
        tips.append("Wear comfortable shoes and keep an eye on traffic at crossings.")
    elif mode == "transit":
        tips.append("Check the local transit app for live departure times.")
    return _with_tips(body, tips)


@tool_registry.register(
    description="Get restaurant and dining recommendations for a location",
    parameters={
        "type": "object",
        "properties": {
            "location": {"type": "string", "description": "The location to search restaurants in"},
            "cuisine": {"type": "string", "description": "Specific cuisine type (optional)"},
        },
        "required": ["location"],
    },
    category="places",
)
async def get_dining_recommendations(ctx, location: str, cuisine: Optional[str] = None) -> str:
    if not _places_ready(ctx):
        return NOT_CONFIGURED
    cuisine_text = f" {cuisine}" if cuisine else ""

    try:
        coords = await ctx.places.geocode(location)
        if coords is None:
            return f'Location "{location}" not found. Please check the spelling and try again.'
        lat, lng = coords
        keyword = f"{cuisine} restaurant" if cuisine else "restaurant"
        places = await ctx.places.places_nearby(lat, lng, 2000, "restaurant", keyword=keyword)
    except PlacesError as e:
        logger.error("dining_lookup_failed", location=location, error=str(e))
        return f"Unable to get dining recommendations for {location}. Please try again later."

    good = [p for p in places if (p.get("rating") or 0) >= 3.5][:6]
    if not good:
        return f"No{cuisine_text} restaurants found near {location}. Try searching for a different cuisine or location."

    lines = []
    for index, place in enumerate(good, start=1):
        price = "💰" * int(place["price_level"]) if place.get("price_level") else "💰"
        hours = place.get("opening_hours")
        open_now = ""
        if hours is not None:
            open_now = " 🟢" if hours.get("open_now") else " 🔴"
        lines.append(
            f"{index}. {place.get('name', 'Unnamed restaurant')} ⭐ {place['rating']} {price}{open_now}"
            f"{_distance_text(lat, lng, place)}"
        )

    body = (
        f"🍽️ Recommended{cuisine_text} restaurants near {location}:\n"
        + "\n".join(lines)
        + "\n\nLegend: ⭐ Rating | 💰 Price level | 🟢 Open now | 🔴 Closed"
    )
    return _with_tips(body, ["Popular places fill up at peak hours, so consider booking ahead."])


@tool_registry.register(
    description="Get various transportation options between two locations",
    parameters={
        "type": "object",
        "properties": {
            "from": {"type": "string", "description": "Starting location"},
            "to": {"type": "string", "description": "Destination location"},
        },
        "required": ["from", "to"],
    },
    category="places",
    aliases={"from": "origin", "to": "destination"},
)
async def get_transportation_options(ctx, origin: str, destination: str) -> str:
    if not _places_ready(ctx):
        return NOT_CONFIGURED

    results = []
    for travel_mode, emoji, label in TRANSPORT_OPTIONS:
        try:
            routes = await ctx.places.directions(origin, destination, travel_mode)
        except PlacesError as e:
            # Not every mode exists for every route
            logger.warning("transport_mode_unavailable", mode=travel_mode, error=str(e))
            continue
        if not routes or not routes[0].get("legs"):
            continue

        leg = routes[0]["legs"][0]
        extra = ""
        if travel_mode == "transit":
            lines = []
            for step in leg.get("steps") or []:
                line = (step.get("transit_details") or {}).get("line") or {}
                name = line.get("short_name") or line.get("name")
                if name:
                    lines.append(name)
            if lines:
                extra = f" via {', '.join(lines)}"
        duration = (leg.get("duration") or {}).get("text", "unknown")
        distance = (leg.get("distance") or {}).get("text", "unknown")
        results.append(f"{emoji} {label}: {duration} ({distance}){extra}")

    if not results:
        return f"No transportation options found from {origin} to {destination}. Please check the locations and try again."

    body = f"🚊 Transportation options from {origin} to {destination}:\n" + "\n".join(results)
    return _with_tips(body, ["Ask for step-by-step directions for whichever option suits you."])
