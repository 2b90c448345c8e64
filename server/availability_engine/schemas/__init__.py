"""Pydantic schemas for request/response validation."""

from .booking import *  # noqa: F403
from .common import *  # noqa: F403
from .health import *  # noqa: F403
from .maintenance import *  # noqa: F403
from .rule import *  # noqa: F403
from .slot import *  # noqa: F403
from .waitlist import *  # noqa: F403
