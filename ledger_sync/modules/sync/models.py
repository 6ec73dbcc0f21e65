from ledger_sync.database.database import Base
from sqlalchemy import Column, String, DateTime


class SyncMetadata(Base):
    """Última sincronización exitosa por tipo de entidad (partners, products, balances)"""
    __tablename__ = "sync_metadata"

    entity_type = Column(String(50), primary_key=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=False)
