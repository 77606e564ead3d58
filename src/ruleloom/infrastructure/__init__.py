"""Infrastructure domain — project configuration and the file watcher.

Note: ``ruleloom.infrastructure.watcher`` is not re-exported here because it
imports the optional ``watchfiles`` dependency at call time.  Import it
directly::

    from ruleloom.infrastructure.watcher import watch
"""

from ruleloom.infrastructure.config import (
    CONFIG_FILENAME,
    OUTPUT_FORMATS,
    ConfigError,
    EngineConfig,
    load_config,
    parse_config,
)

__all__ = [
    "CONFIG_FILENAME",
    "OUTPUT_FORMATS",
    "ConfigError",
    "EngineConfig",
    "load_config",
    "parse_config",
]
