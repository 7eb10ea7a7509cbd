from __future__ import annotations

from juris.tenancy import TenantDataCore


class BaseService:
    """
    Base class for services. Holds the data access core shared by repositories.

    Services keep orchestration; statements belong to repositories.
    """

    def __init__(self, core: TenantDataCore) -> None:
        self.core = core
