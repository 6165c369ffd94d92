"""Routers package."""

from . import (
    health,
    scan,
    billing,
)
