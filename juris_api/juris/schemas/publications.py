from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .common import RecordRead

PublicationSource = Literal["CNJ-DATAJUD", "Codilo", "JusBrasil"]
PublicationStatus = Literal["nova", "pendente", "atribuida", "finalizada", "descartada"]
Urgency = Literal["baixa", "media", "alta"]


class PublicationBase(BaseModel):
    oab_number: str = Field(..., description="OAB registration the publication was found for")
    process_number: Optional[str] = Field(default=None, description="Court process number")
    publication_date: date = Field(..., description="Date the official gazette published it")
    content: str = Field(..., description="Full publication text")
    source: PublicationSource = Field(..., description="Provider the publication came from")
    external_id: Optional[str] = Field(default=None, description="Identifier at the provider")


# PUBLIC_INTERFACE
class PublicationCreate(PublicationBase):
    """Payload to store a publication for the calling user."""
    status: Optional[PublicationStatus] = Field(default=None, description="Defaults to 'nova'")


# PUBLIC_INTERFACE
class PublicationUpdate(BaseModel):
    """Partial update; omitted fields keep their stored values."""
    status: Optional[PublicationStatus] = None
    urgencia: Optional[Urgency] = None
    responsavel: Optional[str] = None
    vara_comarca: Optional[str] = None
    nome_pesquisado: Optional[str] = None
    diario: Optional[str] = None
    observacoes: Optional[str] = None
    atribuida_para_id: Optional[str] = None
    atribuida_para_nome: Optional[str] = None
    data_atribuicao: Optional[datetime] = None
    tarefas_vinculadas: Optional[List[str]] = None


class Publication(PublicationBase, RecordRead):
    """Stored publication as returned by the repository."""
    user_id: str
    status: str
    urgencia: Optional[str] = None
    responsavel: Optional[str] = None
    vara_comarca: Optional[str] = None
    nome_pesquisado: Optional[str] = None
    diario: Optional[str] = None
    observacoes: Optional[str] = None
    atribuida_para_id: Optional[str] = None
    atribuida_para_nome: Optional[str] = None
    data_atribuicao: Optional[datetime] = None
    tarefas_vinculadas: List[Any] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        from_attributes = True


class PublicationFilters(BaseModel):
    """Listing filters; all optional."""
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1, le=1000)
    status: Optional[PublicationStatus] = None
    source: Optional[PublicationSource] = None
    search: Optional[str] = Field(default=None, description="Matches content or process number")
    date_from: Optional[date] = None
    date_to: Optional[date] = None


class PublicationStats(BaseModel):
    total: int = 0
    nova: int = 0
    pendente: int = 0
    atribuida: int = 0
    finalizada: int = 0
    descartada: int = 0
    this_month: int = 0


class ExternalPublication(PublicationBase):
    """A record already fetched from an external provider, ready to import."""
    metadata: Optional[Dict[str, Any]] = None
