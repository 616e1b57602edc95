STANDARD_LOG_LEVELS = {
    "DEBUG": {"icon": "🕸️", "loguru_color": "<fg #DC5F00>"},
    "INFO": {"icon": "📰", "loguru_color": "<fg #FC5F39>"},
    "WARNING": {"icon": "⚠️", "loguru_color": "<fg #DC5F00>"},
    "ERROR": {"icon": "❌", "loguru_color": "<fg #ff0000>"},
    "CRITICAL": {"icon": "💀", "loguru_color": "<fg #ff0000>"},
}

CUSTOM_LOG_LEVELS = {
    "METEOR": {
        "icon": "☄️",
        "loguru_color": "<fg #7871d6>",
        "no": 50,
    },
    "API": {"icon": "👾", "loguru_color": "<fg #006989>", "no": 45},
    "PROVIDER": {
        "icon": "👻",
        "loguru_color": "<fg #d6bb71>",
        "no": 40,
    },
    "ANIME": {
        "icon": "🎌",
        "loguru_color": "<fg #d171d6>",
        "no": 35,
    },
    "CACHE": {
        "icon": "💾",
        "loguru_color": "<fg #5aa5d9>",
        "no": 32,
    },
    "BROWSER": {
        "icon": "📄",
        "loguru_color": "<fg #71d6d6>",
        "no": 30,
    },
}
