"""Coordinators over live kernel state and the snapshot store."""

from rtr.services.iptables import IptablesService
from rtr.services.iproute import IPRouteService
from rtr.services.iprule import IPRuleService
from rtr.services.persist import DomainResult, PersistService, RestoreReport

__all__ = [
    "IptablesService",
    "IPRouteService",
    "IPRuleService",
    "PersistService",
    "DomainResult",
    "RestoreReport",
]
