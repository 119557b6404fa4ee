from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from django.conf import settings
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayResult:
    success: bool
    transaction_id: str = ""
    error: str = ""


class BaseGateway:
    """Port de décaissement : une implémentation par prestataire."""

    def disburse(self, payment) -> GatewayResult:  # pragma: no cover - interface
        raise NotImplementedError


class SimulatedGateway(BaseGateway):
    """Prestataire simulé : chaque décaissement aboutit."""

    def disburse(self, payment) -> GatewayResult:
        transaction_id = f"TXN-{uuid.uuid4().hex[:12].upper()}"
        logger.info("Décaissement simulé %s (%s) -> %s", payment.reference, payment.amount, transaction_id)
        return GatewayResult(success=True, transaction_id=transaction_id)


class RejectingGateway(BaseGateway):
    """Prestataire indisponible : chaque décaissement est refusé."""

    def disburse(self, payment) -> GatewayResult:
        return GatewayResult(success=False, error="Prestataire de paiement indisponible.")


def get_gateway(payment_method: str) -> BaseGateway:
    gateways = getattr(settings, "PAYMENT_GATEWAYS", {})
    dotted_path = gateways.get(payment_method) or gateways.get("default")
    if not dotted_path:
        raise KeyError(f"Aucun prestataire configuré pour '{payment_method}'.")
    return import_string(dotted_path)()
