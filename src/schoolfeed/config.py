"""Feed configuration loaded from environment variables.

Defaults describe the one school this feed is built for; credentials come
from the environment or a local .env file.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class FeedConfig(BaseSettings):
    """Feed configuration loaded from environment variables.

    Settings are loaded from environment variables with sensible defaults.
    For local development, create a .env file in the project root.
    """

    # SIS connection
    sis_base_url: str = Field(
        default="https://herakles.webuntis.com/",
        description="Base URL of the WebUntis instance (trailing slash)",
    )
    sis_school: str = Field(
        default="Marie-Curie-Gym",
        description="School login name, sent as query parameter and cookie",
    )
    sis_app_id: str = Field(
        default="MCG-Display",
        description="Client id reported in JSON-RPC calls",
    )
    request_timeout: float = Field(
        default=10.0,
        description="Timeout in seconds for every upstream call",
    )
    login_attempts: int = Field(
        default=1,
        ge=1,
        description="Login attempts on transport failure (1 = no retry)",
    )

    # Credentials
    sis_username: str = Field(default="", description="SIS username")
    sis_password: str = Field(default="", description="SIS password")
    sis_secret: str = Field(
        default="",
        description="Shared TOTP secret; preferred over the password when set",
    )

    # Calendar integration; the resource must be readable by the login user
    calendar_name: str = Field(
        default="Schuljahreskalender",
        description="External calendar whose entries are shown",
    )
    calendar_resource_type: str = Field(
        default="STUDENT",
        description="Resource type used to proxy calendar reads",
    )
    calendar_resource: int = Field(
        default=5186,
        description="Resource id used to proxy calendar reads",
    )

    # Cache
    cache_dir: str = Field(
        default="tmp/cache",
        description="Directory for cached SIS responses",
    )
    cache_ttl_minutes: int = Field(
        default=60,
        ge=1,
        description="Minutes a cached response stays valid",
    )

    # Logging
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (for production)",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    model_config = {
        "env_prefix": "",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


_config: FeedConfig | None = None


def get_config() -> FeedConfig:
    """Get the feed configuration singleton.

    Returns:
        FeedConfig: Feed configuration instance
    """
    global _config
    if _config is None:
        _config = FeedConfig()
    return _config
