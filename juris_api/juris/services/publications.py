from __future__ import annotations

import hashlib
import json
import logging
from datetime import date
from typing import Any, Iterable, List, Mapping, Union

from juris.repositories.publications import PublicationRepository
from juris.schemas.publications import ExternalPublication, PublicationSource
from juris.services.base import BaseService
from juris.tenancy import BulkResult, ConstraintViolation, TenantContext, TenantDataCore

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def from_provider_record(
    raw: Mapping[str, Any], *, oab_number: str, source: PublicationSource = "Codilo"
) -> ExternalPublication:
    """
    Map one raw provider payload onto an ExternalPublication.

    Providers disagree on field names (``numero``/``cnj``/``codigo_cnj`` for
    the process number, ``data_publicacao``/``data`` for the date,
    ``conteudo``/``texto`` for the text). Missing dates fall back to today
    and a missing provider id falls back to the process number, then to a
    digest of the payload, so re-importing the same record stays idempotent.
    """
    process_number = raw.get("numero") or raw.get("cnj") or raw.get("codigo_cnj") or None
    published = raw.get("data_publicacao") or raw.get("data") or date.today().isoformat()
    content = raw.get("conteudo") or raw.get("texto") or json.dumps(raw, sort_keys=True, default=str)
    external_id = raw.get("id") or raw.get("codigo") or process_number
    if not external_id:
        external_id = hashlib.sha1(content.encode("utf-8")).hexdigest()
    return ExternalPublication(
        oab_number=oab_number,
        process_number=process_number,
        publication_date=str(published)[:10],
        content=content,
        source=source,
        external_id=str(external_id),
    )


class PublicationImportService(BaseService):
    """
    Imports publications that were already fetched from an external provider.

    Items are inserted one at a time; a duplicate (same user and
    external_id) or any other constraint failure is reported in the result
    and the rest of the batch still goes in.
    """

    def __init__(self, core: TenantDataCore) -> None:
        super().__init__(core)
        self.repo = PublicationRepository(core)

    # PUBLIC_INTERFACE
    async def import_publications(
        self,
        ctx: TenantContext,
        user_id: str,
        items: Iterable[Union[ExternalPublication, Mapping[str, Any]]],
    ) -> BulkResult:
        """Store ``items`` for ``user_id`` with status 'nova'; returns per-item outcome."""
        records: List[dict] = []
        for item in items:
            pub = item if isinstance(item, ExternalPublication) else ExternalPublication.model_validate(item)
            records.append({**pub.model_dump(), "user_id": user_id, "status": "nova"})

        result = await self.core.insert_many(
            ctx,
            self.repo.table,
            records,
            continue_on=(ConstraintViolation,),
            key_field="external_id",
        )
        if result.failed:
            logger.warning(
                "Publication import for user %s skipped %d of %d items",
                user_id,
                result.failed,
                len(records),
            )
        return result
