from receptionist.backends.base import SchedulingBackend
from receptionist.backends.rest import RestSchedulingBackend

__all__ = ["RestSchedulingBackend", "SchedulingBackend"]
