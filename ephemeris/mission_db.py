"""
Mission Database

Local lookup table used to enrich crew records. The crew endpoint only
provides names, so role, agency, portrait and mission dates come from here.

Entries with an ``alias_for`` key redirect to the canonical entry.
"""

import re
from typing import Any, Dict, Optional

_WIKI = "https://upload.wikimedia.org/wikipedia/commons/thumb"

MISSION_DB: Dict[str, Dict[str, Any]] = {
    # Starliner (extended stay)
    'Sunita Williams': {
        'start': '2024-06-05', 'role': 'Commander', 'agency': 'NASA',
        'image': f"{_WIKI}/a/a6/Sunita_Williams_official_portrait_2018.jpg/480px-Sunita_Williams_official_portrait_2018.jpg",
    },
    'Suni Williams': {'alias_for': 'Sunita Williams'},
    'Barry Wilmore': {
        'start': '2024-06-05', 'role': 'Pilot', 'agency': 'NASA',
        'image': f"{_WIKI}/3/3b/Barry_Wilmore_official_portrait_2014.jpg/480px-Barry_Wilmore_official_portrait_2014.jpg",
    },
    'Butch Wilmore': {'alias_for': 'Barry Wilmore'},

    # Crew-9
    'Nick Hague': {
        'start': '2024-09-28', 'role': 'Commander', 'agency': 'NASA',
        'image': f"{_WIKI}/4/4c/Nick_Hague_official_portrait_2016.jpg/480px-Nick_Hague_official_portrait_2016.jpg",
    },
    'Aleksandr Gorbunov': {
        'start': '2024-09-28', 'role': 'Mission Specialist', 'agency': 'Roscosmos',
        'image': f"{_WIKI}/2/23/Aleksandr_Gorbunov_official_portrait.jpg/480px-Aleksandr_Gorbunov_official_portrait.jpg",
    },

    # Soyuz MS-26
    'Donald Pettit': {
        'start': '2024-09-11', 'role': 'Flight Engineer', 'agency': 'NASA',
        'image': f"{_WIKI}/0/09/Donald_Pettit_official_portrait_2011.jpg/480px-Donald_Pettit_official_portrait_2011.jpg",
    },
    'Don Pettit': {'alias_for': 'Donald Pettit'},
    'Alexey Ovchinin': {
        'start': '2024-09-11', 'role': 'Commander', 'agency': 'Roscosmos',
        'image': f"{_WIKI}/8/8e/Alexey_Ovchinin_official_portrait.jpg/480px-Alexey_Ovchinin_official_portrait.jpg",
    },
    'Ivan Vagner': {
        'start': '2024-09-11', 'role': 'Flight Engineer', 'agency': 'Roscosmos',
        'image': f"{_WIKI}/6/68/Ivan_Vagner_official_portrait.jpg/480px-Ivan_Vagner_official_portrait.jpg",
    },

    # Soyuz MS-25
    'Oleg Kononenko': {
        'start': '2023-09-15', 'role': 'Commander', 'agency': 'Roscosmos',
        'image': f"{_WIKI}/3/30/Oleg_Kononenko_official_portrait_2011.jpg/480px-Oleg_Kononenko_official_portrait_2011.jpg",
    },
    'Tracy Caldwell Dyson': {
        'start': '2024-03-23', 'role': 'Flight Engineer', 'agency': 'NASA',
        'image': f"{_WIKI}/3/36/Tracy_Caldwell_Dyson_official_portrait_2010.jpg/480px-Tracy_Caldwell_Dyson_official_portrait_2010.jpg",
    },
    'Tracy Dyson': {'alias_for': 'Tracy Caldwell Dyson'},

    # Crew-8
    'Matthew Dominick': {
        'start': '2024-03-04', 'role': 'Commander', 'agency': 'NASA',
        'image': f"{_WIKI}/6/66/Matthew_Dominick_official_portrait.jpg/480px-Matthew_Dominick_official_portrait.jpg",
    },
    'Jeanette Epps': {
        'start': '2024-03-04', 'role': 'Mission Specialist', 'agency': 'NASA',
    },
}


def _normalize(name: str) -> str:
    return re.sub(r"[^a-z ]", "", name.lower()).strip()


def _resolve(key: str) -> Dict[str, Any]:
    entry = MISSION_DB[key]
    target = entry.get('alias_for')
    if target and target in MISSION_DB:
        return MISSION_DB[target]
    return entry


def find_mission_profile(name: str) -> Optional[Dict[str, Any]]:
    """
    Look up a crew member by name.

    An exact match on the normalized name wins. Otherwise the first entry
    that shares the last name and contains (or is contained in) the full
    name is used, which catches middle names and shortened first names.
    """
    search = _normalize(name)
    if not search:
        return None

    for key in MISSION_DB:
        if _normalize(key) == search:
            return _resolve(key)

    last = search.split(" ")[-1]
    for key in MISSION_DB:
        candidate = _normalize(key)
        if last in candidate and (search in candidate or candidate in search):
            return _resolve(key)

    return None
