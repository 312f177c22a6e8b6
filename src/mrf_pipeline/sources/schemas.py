"""
Pydantic models for the publisher's manifest and index file JSON.

Only the fields discovery needs are modelled; unknown fields are ignored.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from mrf_pipeline.common.exceptions import IndexParseError, ManifestParseError


class ManifestBlob(BaseModel):
    """One index file listed by the manifest."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(..., description="Index file name, usually date-prefixed")
    download_url: str = Field(
        ...,
        alias="downloadUrl",
        description="Location of the index file",
        min_length=1,
    )
    size: Optional[int] = Field(default=None, ge=0)


class Manifest(BaseModel):
    """Top-level manifest: {"blobs": [...]}."""

    model_config = ConfigDict(extra="ignore")

    blobs: List[ManifestBlob] = Field(default_factory=list)


class FileLocation(BaseModel):
    """A data file reference inside a reporting structure."""

    model_config = ConfigDict(extra="ignore")

    description: Optional[str] = None
    location: str = Field(..., min_length=1)


class ReportingStructure(BaseModel):
    """Group of plans sharing one set of file locations."""

    model_config = ConfigDict(extra="ignore")

    in_network_files: Optional[List[FileLocation]] = None
    allowed_amount_files: Optional[List[FileLocation]] = None
    # CMS schema publishes a single allowed-amount file per structure
    allowed_amount_file: Optional[FileLocation] = None
    reporting_plans: Optional[List[Dict[str, Any]]] = None


class IndexFile(BaseModel):
    """Index (table-of-contents) file for one reporting entity."""

    model_config = ConfigDict(extra="ignore")

    reporting_entity_name: str
    reporting_entity_type: str
    reporting_structure: List[ReportingStructure] = Field(default_factory=list)


def parse_manifest(body: bytes) -> Manifest:
    """
    Parse a manifest body.

    Raises:
        ManifestParseError: Body is not valid JSON or does not match the schema
    """
    try:
        return Manifest.model_validate_json(body)
    except ValidationError as e:
        raise ManifestParseError(
            f"Failed to parse manifest: {e.error_count()} validation error(s)",
            cause=e,
        ) from e


def parse_index_file(body: bytes) -> IndexFile:
    """
    Parse an index file body. CPU-bound for large files; run off the event loop.

    Raises:
        IndexParseError: Body is not valid JSON or does not match the schema
    """
    try:
        return IndexFile.model_validate_json(body)
    except ValidationError as e:
        raise IndexParseError(
            f"Failed to parse index file: {e.error_count()} validation error(s)",
            cause=e,
        ) from e
