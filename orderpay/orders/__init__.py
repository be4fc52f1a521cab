"""Order pricing, numbering and lifecycle."""
from .numbering import generate_order_no, generate_refund_no
from .pricing import CartLine, CartTotals, PricingEngine
from .state_machine import OrderStateMachine, Transition

__all__ = [
    "CartLine",
    "CartTotals",
    "OrderStateMachine",
    "PricingEngine",
    "Transition",
    "generate_order_no",
    "generate_refund_no",
]
