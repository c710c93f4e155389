"""
Corpus Query Endpoints.

Read-only access to the legal knowledge base for other collaborators.
"""
import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..models import ErrorResponse, Instrument, InstrumentDetail, InstrumentStatus, Unit
from ..deps import get_corpus
from ...corpus.store import CorpusStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/corpus", tags=["Corpus"])


@router.get("/instruments", response_model=List[Instrument])
def search_instruments(
    q: Optional[str] = Query(None, max_length=200, description="Text in title, abbreviation or reference"),
    domain: Optional[List[str]] = Query(None, description="Domain tags (formation, social, ...)"),
    jurisdiction: Optional[str] = Query(None, description="CH or a canton code"),
    status_filter: Optional[str] = Query("in_force", alias="status", description="Status, or 'all'"),
    limit: int = Query(20, ge=1, le=100),
    corpus: CorpusStore = Depends(get_corpus),
):
    """Search instruments by text, domain and jurisdiction."""
    return corpus.search_instruments(
        query=q,
        domain_tags=domain,
        jurisdiction=jurisdiction,
        status=None if status_filter == "all" else status_filter,
        limit=limit,
    )


@router.get(
    "/instruments/{instrument_uid}",
    response_model=InstrumentDetail,
    responses={404: {"model": ErrorResponse, "description": "Unknown instrument"}},
)
def get_instrument(instrument_uid: str, corpus: CorpusStore = Depends(get_corpus)):
    """Instrument with versions, relations and unit counts."""
    instrument = corpus.get_instrument(instrument_uid)
    if instrument is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown instrument {instrument_uid}",
        )
    return instrument


@router.get(
    "/instruments/{instrument_uid}/units",
    response_model=Unit,
    responses={404: {"model": ErrorResponse, "description": "No such unit"}},
)
def get_unit(
    instrument_uid: str,
    cite_key: str = Query(..., min_length=1, description="Locator, e.g. 'art. 17'"),
    as_of: Optional[date] = Query(None, description="Date selecting the version in force"),
    corpus: CorpusStore = Depends(get_corpus),
):
    """Fetch a unit by citation key, optionally as of a date."""
    unit = corpus.get_unit(instrument_uid, cite_key, as_of=as_of)
    if unit is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No unit '{cite_key}' for {instrument_uid}" + (f" on {as_of}" if as_of else ""),
        )
    return unit


@router.get(
    "/instruments/{instrument_uid}/status",
    response_model=InstrumentStatus,
    responses={404: {"model": ErrorResponse, "description": "Unknown instrument"}},
)
def get_status(instrument_uid: str, corpus: CorpusStore = Depends(get_corpus)):
    """Current status and replacement chain."""
    result = corpus.resolve_status(instrument_uid)
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown instrument {instrument_uid}",
        )
    return result


@router.get("/units/search", response_model=List[Unit])
def search_units(
    q: str = Query(..., min_length=2, max_length=200),
    limit: int = Query(20, ge=1, le=100),
    corpus: CorpusStore = Depends(get_corpus),
):
    """Text search across current units of in-force instruments."""
    return corpus.search_units(q, limit=limit)
