"""storage/__init__.py"""
from .connections import ConnectionRangeLookup
from .database import Database
from .repository import FlowFilter, FlowRepository

__all__ = ["ConnectionRangeLookup", "Database", "FlowFilter", "FlowRepository"]
