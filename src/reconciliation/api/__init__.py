from reconciliation.api.routes import payment_router

__all__ = ["payment_router"]
