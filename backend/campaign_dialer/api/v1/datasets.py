"""Lead dataset API endpoints."""

import io
import zipfile
from typing import Any

from fastapi import APIRouter, HTTPException, Response, UploadFile, status

from campaign_dialer.api.v1.auth import CurrentUser
from campaign_dialer.models.lead import has_valid_phone, normalize_phone
from campaign_dialer.schemas.datasets import (
    BlacklistClearResponse,
    DatasetImportResponse,
    DatasetResponse,
    DatasetRowsResponse,
    LeadResponse,
    PhoneLookupResponse,
    PhoneMatch,
    SuppressionSyncResponse,
)
from campaign_dialer.services.csv_parser import (
    CSVFormatError,
    CSVParseResult,
    ParsedLead,
    parse_csv,
    render_csv,
)
from campaign_dialer.services.dependencies import Runtime
from campaign_dialer.services.lead_store import Dataset, DatasetUnavailableError

router = APIRouter(prefix="/datasets", tags=["datasets"])

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


async def _read_upload(file: UploadFile) -> CSVParseResult:
    content = await file.read()
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File too large (max 10MB)")
    try:
        return parse_csv(content)
    except CSVFormatError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e


def _export_filename(dataset: Dataset) -> str:
    filename = dataset.original_name or f"{dataset.id}.csv"
    if not filename.lower().endswith(".csv"):
        filename += ".csv"
    return filename


def _csv_response(filename: str, content: str) -> Response:
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _drop_known_phones(leads: list[ParsedLead], known: set[str]) -> tuple[list[ParsedLead], int]:
    """Drop rows whose phone is already in another dataset or earlier in this file."""
    seen = set(known)
    kept: list[ParsedLead] = []
    skipped = 0
    for lead in leads:
        key = normalize_phone(lead.phone)
        if has_valid_phone(lead.phone) and key in seen:
            skipped += 1
            continue
        seen.add(key)
        kept.append(lead)
    return kept, skipped


@router.post("", response_model=DatasetImportResponse, status_code=status.HTTP_201_CREATED)
async def import_dataset(
    file: UploadFile,
    current_user: CurrentUser,
    runtime: Runtime,
    skip_duplicates: bool = True,
) -> DatasetImportResponse:
    """
    Import leads from a CSV file.

    A ``Phone`` column is required. Recognised optional columns:
    - First Name, Last Name
    - Address, City, Zip Code (or Postal Code)
    - Email
    - Status, Ended Reason, Success Evaluation, Transcript

    Other columns are kept and exported unchanged. Phones already present
    in another dataset are skipped unless ``skip_duplicates`` is false.
    """
    result = await _read_upload(file)
    leads = result.leads
    skipped = 0
    if skip_duplicates:
        leads, skipped = _drop_known_phones(leads, await runtime.leads.known_phones())

    dataset = await runtime.leads.create_dataset(file.filename or "leads.csv", result.headers, leads)
    return DatasetImportResponse(
        **DatasetResponse.from_dataset(dataset).model_dump(),
        duplicates_skipped=skipped,
        errors=result.errors,
    )


@router.get("", response_model=list[DatasetResponse])
async def list_datasets(current_user: CurrentUser, runtime: Runtime) -> list[DatasetResponse]:
    return [DatasetResponse.from_dataset(dataset) for dataset in await runtime.leads.list_datasets()]


@router.get("/phone-lookup", response_model=PhoneLookupResponse)
async def phone_lookup(phone: str, current_user: CurrentUser, runtime: Runtime) -> PhoneLookupResponse:
    """Find a phone number in every dataset (last 10 digits)."""
    if not has_valid_phone(phone):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Enter at least 10 digits")

    names = {dataset.id: dataset.original_name for dataset in await runtime.leads.list_datasets()}
    matches = [
        PhoneMatch(
            dataset_id=lead.dataset_id,
            dataset_name=names.get(lead.dataset_id, lead.dataset_id),
            row_index=lead.row_index,
            first_name=lead.first_name,
            last_name=lead.last_name,
            address=lead.address,
            city=lead.city,
            zip_code=lead.zip_code,
        )
        for lead in await runtime.leads.find_by_phone_anywhere(phone)
    ]
    return PhoneLookupResponse(matches=matches)


@router.post("/sync-suppression", response_model=SuppressionSyncResponse)
async def sync_suppression(current_user: CurrentUser, runtime: Runtime) -> SuppressionSyncResponse:
    """Re-scan every dataset for bad numbers and bookings."""
    totals = SuppressionSyncResponse(datasets=0, processed=0, blacklisted=0, booked=0)
    for dataset in await runtime.leads.list_datasets():
        counts = await runtime.suppression.sync_from_leads(await runtime.leads.list_leads(dataset.id))
        totals.datasets += 1
        totals.processed += counts.processed
        totals.blacklisted += counts.blacklisted
        totals.booked += counts.booked
    return totals


@router.delete("/blacklist", response_model=BlacklistClearResponse)
async def clear_blacklist(current_user: CurrentUser, runtime: Runtime) -> BlacklistClearResponse:
    return BlacklistClearResponse(removed=await runtime.suppression.clear_blacklist())


@router.get("/export-all")
async def export_all_datasets(current_user: CurrentUser, runtime: Runtime) -> Response:
    """
    Download every dataset.

    A single dataset comes back as its CSV; several are bundled in a zip.
    """
    datasets = await runtime.leads.list_datasets()
    if not datasets:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No datasets")

    if len(datasets) == 1:
        dataset = datasets[0]
        leads = await runtime.leads.list_leads(dataset.id)
        return _csv_response(_export_filename(dataset), render_csv(dataset.headers, leads))

    buffer = io.BytesIO()
    used: set[str] = set()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for dataset in datasets:
            filename = _export_filename(dataset)
            # Same upload name twice: prefix with the dataset id
            if filename in used:
                filename = f"{dataset.id}-{filename}"
            used.add(filename)
            leads = await runtime.leads.list_leads(dataset.id)
            archive.writestr(filename, render_csv(dataset.headers, leads))
    return Response(
        content=buffer.getvalue(),
        media_type="application/zip",
        headers={"Content-Disposition": 'attachment; filename="datasets.zip"'},
    )


@router.get("/{dataset_id}", response_model=DatasetRowsResponse)
async def get_dataset(dataset_id: str, current_user: CurrentUser, runtime: Runtime) -> DatasetRowsResponse:
    dataset = await runtime.leads.get_dataset(dataset_id)
    if dataset is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dataset not found")
    leads = await runtime.leads.list_leads(dataset_id)
    return DatasetRowsResponse(
        dataset=DatasetResponse.from_dataset(dataset),
        rows=[LeadResponse.from_lead(lead) for lead in leads],
    )


@router.get("/{dataset_id}/export")
async def export_dataset(dataset_id: str, current_user: CurrentUser, runtime: Runtime) -> Response:
    """Download the dataset as CSV with its call outcomes."""
    dataset = await runtime.leads.get_dataset(dataset_id)
    if dataset is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dataset not found")
    leads = await runtime.leads.list_leads(dataset_id)
    return _csv_response(_export_filename(dataset), render_csv(dataset.headers, leads))


@router.put("/{dataset_id}", response_model=DatasetImportResponse)
async def replace_dataset(
    dataset_id: str,
    file: UploadFile,
    current_user: CurrentUser,
    runtime: Runtime,
) -> DatasetImportResponse:
    """Replace every row of a dataset; campaigns keep pointing at it."""
    result = await _read_upload(file)
    try:
        dataset = await runtime.leads.replace_dataset(
            dataset_id, file.filename or "", result.headers, result.leads
        )
    except DatasetUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dataset not found") from e
    await runtime.campaigns.clear_dataset_tracking(dataset_id)
    return DatasetImportResponse(**DatasetResponse.from_dataset(dataset).model_dump(), errors=result.errors)


@router.delete("/{dataset_id}")
async def delete_dataset(dataset_id: str, current_user: CurrentUser, runtime: Runtime) -> dict[str, Any]:
    """Delete a dataset and detach it from any campaign using it."""
    if not await runtime.leads.delete_dataset(dataset_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dataset not found")
    cleared = await runtime.campaigns.clear_dataset_references(dataset_id)
    await runtime.campaigns.clear_dataset_tracking(dataset_id)
    return {"ok": True, "campaigns_cleared": cleared}
