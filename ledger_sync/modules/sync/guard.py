"""
Protección contra recibos duplicados.

Si un envío anterior llegó al ERP pero la respuesta se perdió, el recibo
queda pendiente localmente aunque el ERP ya lo aplicó. Antes de reenviar se
consulta el saldo remoto de las facturas del recibo: si lo que queda por
cobrar es menor que el total del recibo (con una tolerancia), se asume que
el cobro ya está registrado y se marca como sincronizado sin reenviar.
Las líneas remotas se comparan por partner, serie y número: el código de
documento que asigna el ERP no participa.

Es una reducción de riesgo, no una garantía: entre la consulta y el envío
otro canal puede registrar pagos sobre las mismas facturas.
"""

from decimal import Decimal
from typing import Optional
import logging

from ledger_sync.core.config import settings
from ledger_sync.database.database import LocalStore
from ledger_sync.common.money import ZERO
from ledger_sync.common.references import build_match_key
from ledger_sync.modules.balances.service import BalanceReconciler
from ledger_sync.modules.cash_collections.models import CollectionStatus
from ledger_sync.modules.cash_collections.service import CollectionLedger
from ledger_sync.modules.sync.gateway import RemoteBalancePull

logger = logging.getLogger(__name__)


class DuplicateGuard:
    def __init__(self, store: LocalStore, balances: RemoteBalancePull, epsilon: Optional[Decimal] = None):
        self.store = store
        self.balances = balances
        self.epsilon = settings.DUPLICATE_CHECK_EPSILON if epsilon is None else epsilon

    def verify_not_already_settled(self, group_id: str) -> bool:
        """
        Returns:
            True si el recibo se debe enviar; False si ya está sincronizado
            (localmente o, según el saldo remoto, en el ERP).
        """
        with self.store.session() as db:
            group = CollectionLedger(db).get_group(group_id)
            if group.status == CollectionStatus.SYNCED:
                logger.info(f"Receipt group {group_id} already synced; nothing to check")
                return False

            reconciler = BalanceReconciler(db)
            checked = []
            for row in group.collections:
                if not (row.invoice_number or row.document_code):
                    continue
                ref = row.invoice_series, row.invoice_number, row.document_code
                # Una factura local aún no enviada no puede figurar como cobrada en el ERP
                if reconciler.is_local_unsent(group.partner_id, *ref):
                    continue
                checked.append((build_match_key(group.partner_id, *ref), Decimal(row.amount)))
            partner_id = group.partner_id

        if not checked:
            logger.info(f"Receipt group {group_id} has no remote invoice references (advance payment?); proceeding")
            return True

        try:
            remote_lines = self.balances.fetch_balances(partner_id)
        except Exception as e:
            logger.warning(f"Balance check failed for receipt group {group_id}: {e}. Proceeding with send")
            return True

        keys = {key for key, _ in checked}
        receipt_total = sum((amount for _, amount in checked), ZERO)
        remote_rest = sum(
            (line.rest for line in remote_lines
             if line.rest > ZERO
             and build_match_key(line.partner_id, line.series, line.number, line.document_code) in keys),
            ZERO
        )

        logger.info(
            f"Balance check for receipt group {group_id}: remote rest {remote_rest:.2f}, "
            f"receipt total {receipt_total:.2f}"
        )

        if remote_rest < receipt_total - self.epsilon:
            note = (
                f"El ERP ya refleja el cobro (saldo remoto {remote_rest:.2f} "
                f"< total del recibo {receipt_total:.2f}); no se reenvió"
            )
            with self.store.session() as db:
                CollectionLedger(db).mark_group_synced(group_id, note)
            return False

        return True
