"""Payment authority factory.

Provides get_authority() / set_authority() to swap implementations:
- MercadoPagoAuthority when an access token is configured
- FakeAuthority for development and testing otherwise
"""

from reconciliation.authority.fake_adapter import FakeAuthority
from reconciliation.authority.mercadopago_adapter import MercadoPagoAuthority
from reconciliation.authority.port import AuthorityClient
from reconciliation.config import get_settings

_current_authority: AuthorityClient | None = None


def get_authority() -> AuthorityClient:
    """Return the current payment authority."""
    global _current_authority
    if _current_authority is None:
        settings = get_settings()
        if settings.MERCADO_PAGO_ACCESS_TOKEN:
            _current_authority = MercadoPagoAuthority(
                access_token=settings.MERCADO_PAGO_ACCESS_TOKEN,
                webhook_secret=settings.MERCADO_PAGO_WEBHOOK_SECRET,
                base_url=settings.MERCADO_PAGO_BASE_URL,
                timeout=settings.AUTHORITY_TIMEOUT_SECONDS,
            )
        else:
            _current_authority = FakeAuthority()
    return _current_authority


def set_authority(authority: AuthorityClient) -> None:
    """Override the active payment authority (useful for tests)."""
    global _current_authority
    _current_authority = authority


def reset_authority() -> None:
    """Reset to default authority."""
    global _current_authority
    _current_authority = None
