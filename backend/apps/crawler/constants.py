# apps/crawler/constants.py

"""
Per-country discovery defaults. A run's explicit configuration always wins.
"""

# Tag matrix, highest-volume groups first
TAG_MATRIX = {
    "CZ": {
        "locations": [
            "prague", "praha", "praga", "praguelife", "praguecity", "praguetoday",
            "brno", "brnolife", "brnotoday", "ostrava", "ostravalife",
            "ceska", "czechrepublic", "czech", "czechia", "ceskykrumlov",
            "karlsbad", "karlovy_vary", "plzen", "liberec", "hradeckralove",
        ],
        "lifestyle": [
            "czechgirl", "czechboy", "czechlife", "czechstyle", "czechfashion",
            "praguegirl", "pragueboy", "praguestyle", "pragueinfluencer",
            "czechblogger", "czechinfluencer", "instagramcz",
        ],
        "niches": [
            "czechfood", "czechcuisine", "praguefood", "czechrestaurant",
            "czechfitness", "czechyoga", "czechsport", "czechbeauty",
            "czechmakeup", "czechhair", "czechnails", "czechwedding",
            "czechmom", "czechdad", "czechbaby", "czechfamily",
            "czechtravel", "czechnature", "czechmountains", "czechhiking",
            "czechmusic", "czechart", "czechdesign", "czechphotography",
        ],
        "micro_niches": [
            "praguemom", "praguefit", "pragueyoga", "praguebeauty",
            "brnofit", "brnomom", "brnobeauty", "ostravastyle",
            "czechvegan", "czechhealthy", "czechwellness", "czecheco",
            "czechhandmade", "czechcraftbeer",
        ],
    },
    "SK": {
        "locations": [
            "bratislava", "slovakia", "slovakrepublic", "kosice", "zilina",
        ],
        "lifestyle": [
            "slovakgirl", "slovakblogger", "slovakinfluencer", "instagramsk",
        ],
        "niches": [
            "slovakfood", "slovakfitness", "slovakbeauty", "slovaktravel",
        ],
        "micro_niches": [],
    },
}

CITIES = {
    "CZ": [
        "Praha", "Brno", "Ostrava", "Plzeň", "Liberec", "Olomouc",
        "České Budějovice", "Hradec Králové", "Pardubice", "Zlín",
    ],
    "SK": [
        "Bratislava", "Košice", "Prešov", "Žilina", "Nitra", "Banská Bystrica",
    ],
}

EXTERNAL_SOURCES = {
    "CZ": [
        "https://socialblade.com/instagram/country/cz",
        "https://www.klear.com/influencers/czech-republic",
    ],
    "SK": [
        "https://socialblade.com/instagram/country/sk",
    ],
}


def tags_for_country(country: str) -> list[str]:
    """Flattened tag matrix in priority order, duplicates removed."""
    groups = TAG_MATRIX.get(country.upper(), {})
    tags = []
    for group in ("locations", "lifestyle", "niches", "micro_niches"):
        for tag in groups.get(group, []):
            if tag not in tags:
                tags.append(tag)
    return tags


def cities_for_country(country: str) -> list[str]:
    return list(CITIES.get(country.upper(), []))


def external_sources_for_country(country: str) -> list[str]:
    return list(EXTERNAL_SOURCES.get(country.upper(), []))
