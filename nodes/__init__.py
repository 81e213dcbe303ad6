"""Node classes used by the garage door Node Server."""

from .GarageDoor import GarageDoor as GarageDoor
from .Controller import Controller as Controller
