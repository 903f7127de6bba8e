from __future__ import annotations

from typing import Sequence


class SelectionValidationError(ValueError):
    """Seleção incompleta ou inconsistente; bloqueia apenas o add-to-cart."""

    def __init__(
        self,
        message: str,
        *,
        option_group_ids: Sequence[str] = (),
        topping_group_ids: Sequence[str] = (),
        integrity_errors: Sequence[str] = (),
    ) -> None:
        super().__init__(message)
        self.option_group_ids = list(option_group_ids)
        self.topping_group_ids = list(topping_group_ids)
        self.integrity_errors = list(integrity_errors)


class PricingInconsistency(ArithmeticError):
    pass


class PrintChannelError(Exception):
    CREDENTIAL = "credential"
    TRANSPORT = "transport"
    REJECTED = "rejected"
    LOCAL = "local"

    def __init__(
        self,
        kind: str,
        message: str,
        *,
        printer_id: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.printer_id = printer_id
        self.status_code = status_code


class PaymentError(Exception):
    kind = "payment"
    default_message = "Não foi possível concluir o pagamento"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class PaymentCredentialError(PaymentError):
    kind = "credential"
    default_message = "Terminal de pagamento não configurado"


class PaymentNetworkError(PaymentError):
    kind = "network"
    default_message = "Falha de comunicação com o terminal de pagamento"


class PaymentDeclined(PaymentError):
    kind = "declined"
    default_message = "Pagamento recusado"


class PaymentTimedOut(PaymentError):
    kind = "timeout"
    default_message = "Tempo de pagamento esgotado"


class PaymentConfirmationError(PaymentError):
    kind = "confirmation"
    default_message = "Pagamento aprovado, mas o pedido não foi registrado"


class ItemFetchSuperseded(Exception):
    """A busca foi substituída por outra abertura do diálogo ou pelo fechamento."""

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Item details fetch for {item_id} was superseded")
        self.item_id = item_id
