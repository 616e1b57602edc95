from meteor.core.log_levels import CUSTOM_LOG_LEVELS, STANDARD_LOG_LEVELS
from meteor.core.logger import logger, setupLogger


def test_levels_carry_only_what_loguru_uses():
    for config in STANDARD_LOG_LEVELS.values():
        assert set(config) == {"icon", "loguru_color"}
    for config in CUSTOM_LOG_LEVELS.values():
        assert set(config) == {"icon", "loguru_color", "no"}


def test_custom_levels_are_registered():
    setupLogger("INFO")
    for name, config in CUSTOM_LOG_LEVELS.items():
        level = logger.level(name)
        assert level.no == config["no"]
        assert level.icon == config["icon"]
    setupLogger("DEBUG")
