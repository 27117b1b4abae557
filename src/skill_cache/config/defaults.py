"""Built-in default configuration for the skill cache."""

# Default configuration that serves as the base for all other layers
DEFAULT_CONFIG = {
    "cache": {
        "dir": None,
        "max_age": 30,
        "max_size": 0,
        "lock_timeout": 30.0,
        "offline": False,
    },
}
