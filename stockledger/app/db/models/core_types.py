import enum


class MovementReason(str, enum.Enum):
    purchase_receipt = "PURCHASE_RECEIPT"
    manual_adjustment = "MANUAL_ADJUSTMENT"
    initial_stock = "INITIAL_STOCK"
    sale = "SALE"
    return_ = "RETURN"
    correction = "CORRECTION"
    damage = "DAMAGE"

    @classmethod
    def parse(cls, value: "str | MovementReason") -> "MovementReason":
        """
        Accepte la valeur canonique ou le libellé saisi dans l'écran POS
        ("Manual Adjustment", "initial stock"...).
        """
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().upper().replace("-", "_").replace(" ", "_")
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unknown movement reason {value!r}") from None


class POStatus(str, enum.Enum):
    open = "OPEN"
    partially_received = "PARTIALLY_RECEIVED"
    closed = "CLOSED"
    cancelled = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (POStatus.closed, POStatus.cancelled)
