import logging
import os

from pydantic import BaseModel, Field


DEFAULT_WS_URL = "ws://localhost:8080/ws"

_ENV_FALLBACKS = {
    "ws_url": "GOOSE_WS_URL",
    "session_id": "GOOSE_SESSION_ID",
    "auth_token": "GOOSE_AUTH_TOKEN",
}


class GooseWebSettings(BaseModel):
    """Connection and timing configuration for a Goose Web provider.

    Args:
        ws_url: Websocket endpoint of the Goose server.
        session_id: Goose session to talk to. A new one is created when
            absent or when the remote rejects it.
        auth_token: Sent as a bearer token on the websocket handshake and
            on the session REST calls.
        connection_timeout: Seconds allowed for the websocket handshake.
        response_timeout: Seconds allowed between sending the prompt and
            receiving a terminal message.
        assume_session_valid: Skip remote validation of ``session_id``.
        logger: Where diagnostics go. Defaults to the provider's module
            logger.
    """

    ws_url: str = DEFAULT_WS_URL
    session_id: str | None = None
    auth_token: str | None = None
    connection_timeout: float = Field(default=30.0, gt=0)
    response_timeout: float = Field(default=120.0, gt=0)
    assume_session_valid: bool = False
    logger: logging.Logger | None = None

    model_config = {"arbitrary_types_allowed": True}

    @classmethod
    def from_env(cls, **overrides) -> "GooseWebSettings":
        """Build settings from ``GOOSE_*`` environment variables.

        Keyword arguments that are not ``None`` take precedence.
        """
        values = {}
        for field_name, env_var in _ENV_FALLBACKS.items():
            value = os.getenv(env_var)
            if value:
                values[field_name] = value
        values.update(
            {k: v for k, v in overrides.items() if v is not None}
        )
        return cls(**values)

    def merge(self, other: "GooseWebSettings | None") -> "GooseWebSettings":
        """Return a copy overridden by the fields explicitly set on *other*."""
        if other is None:
            return self.model_copy()
        update = {name: getattr(other, name) for name in other.model_fields_set}
        return self.model_copy(update=update)

    def auth_headers(self) -> dict[str, str]:
        if not self.auth_token:
            return {}
        return {"Authorization": f"Bearer {self.auth_token}"}
