"""Network configuration constants for the monitoring service."""

DEFAULT_HOST: str = "0.0.0.0"
DEFAULT_PORT: int = 8000
HOST_ENV_VAR: str = "QUIZGUARD_HOST"
PORT_ENV_VAR: str = "QUIZGUARD_PORT"
