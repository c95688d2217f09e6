"""Payment senders for settling task usage."""

from compute_market_service.clients.simulated_sender import SimulatedPaymentSender
from compute_market_service.clients.wallet_client import PaymentSender, WalletClient

__all__ = ["PaymentSender", "SimulatedPaymentSender", "WalletClient"]
