"""
Interfaces hacia el ERP remoto.

Las implementaciones concretas (cliente HTTP del ERP) se registran con
`GATEWAY_FACTORY = "paquete.modulo:callable"`; el callable retorna un objeto
que implementa `RemoteSettlementGateway` y `RemoteBalancePull`, y
opcionalmente `CatalogPull`.
"""

from abc import ABC, abstractmethod
from typing import List, Optional
import importlib
import logging

from ledger_sync.core.config import settings
from ledger_sync.core.exceptions import GatewayNotConfigured
from ledger_sync.modules.balances.schemas import RemoteBalance
from ledger_sync.modules.catalog.schemas import CatalogSnapshot
from ledger_sync.modules.sync.schemas import Submission, GatewayResponse

logger = logging.getLogger(__name__)


class GatewayUnavailable(Exception):
    """Fallo de transporte (red, timeout, 5xx). El envío se puede reintentar."""


class RemoteSettlementGateway(ABC):
    @abstractmethod
    def submit(self, submission: Submission) -> GatewayResponse:
        """
        Enviar una factura o un recibo. No es idempotente.

        Raises:
            GatewayUnavailable: el ERP no respondió.
        """
        pass


class RemoteBalancePull(ABC):
    @abstractmethod
    def fetch_balances(self, partner_id: Optional[str] = None) -> List[RemoteBalance]:
        """Saldos pendientes completos (o solo los del partner)."""
        pass


class CatalogPull(ABC):
    @abstractmethod
    def fetch_catalog(self) -> CatalogSnapshot:
        """Partners con sedes, productos y precios de oferta."""
        pass


def load_gateway_factory(path: Optional[str] = None):
    """Resolver el callable configurado en GATEWAY_FACTORY ("modulo:atributo")"""
    path = path or settings.GATEWAY_FACTORY
    if not path:
        raise GatewayNotConfigured()

    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise GatewayNotConfigured(f"GATEWAY_FACTORY inválido: '{path}' (formato esperado 'modulo:callable')")

    module = importlib.import_module(module_name)
    factory = getattr(module, attribute)
    logger.info(f"Gateway factory loaded: {path}")
    return factory
