"""blacklist/__init__.py"""
from .base import BlacklistGateway, Membership
from .ipset import IpsetGateway

__all__ = ["BlacklistGateway", "IpsetGateway", "Membership"]
