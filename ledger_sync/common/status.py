import enum
from typing import Mapping, FrozenSet


class ErrorKind(str, enum.Enum):
    TRANSIENT = "transient"    # Red caída, timeout, 5xx
    REJECTED = "rejected"      # El ERP rechazó el documento
    VALIDATION = "validation"  # Datos locales incompletos o saldo insuficiente al reenviar
    OPERATOR = "operator"      # Cancelado por el operador


def transition_allowed(table: Mapping[enum.Enum, FrozenSet[enum.Enum]], current, target) -> bool:
    return target in table.get(current, frozenset())
