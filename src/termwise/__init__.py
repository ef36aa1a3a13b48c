"""termwise — terminal session multiplexer with adaptive error-pattern learning."""

__version__ = "0.1.0"
