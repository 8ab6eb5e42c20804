"""Job payload variants.

Payloads are a tagged union discriminated by ``job_type``; the stored JSON
payload of a PipelineJob row round-trips through ``parse_payload``.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter

NEW_COMIC_FILE = "new_comic_file"
PROCESS_COMIC_SERIES = "process_comic_series"

JOB_TYPES = (NEW_COMIC_FILE, PROCESS_COMIC_SERIES)


class SeriesHint(BaseModel):
    """What the comic's own metadata says about its series."""

    library_id: str | None = None
    # Series title from embedded metadata only, never from the file name
    series: str | None = None
    year: int | None = None
    volume: str | None = None


class NewComicFile(BaseModel):
    job_type: Literal["new_comic_file"] = NEW_COMIC_FILE
    file_path: str

    @property
    def serial_key(self) -> str:
        return self.file_path


class ProcessComicSeries(BaseModel):
    job_type: Literal["process_comic_series"] = PROCESS_COMIC_SERIES
    series_path: str
    comic_id: str
    metadata: SeriesHint = Field(default_factory=SeriesHint)

    @property
    def serial_key(self) -> str:
        return self.series_path


JobPayload = Annotated[NewComicFile | ProcessComicSeries, Field(discriminator="job_type")]

_payload_adapter: TypeAdapter[NewComicFile | ProcessComicSeries] = TypeAdapter(JobPayload)


def parse_payload(data: dict) -> NewComicFile | ProcessComicSeries:
    """Validate a stored payload into its variant.

    Raises:
        pydantic.ValidationError: Unknown job_type or malformed payload.
    """
    return _payload_adapter.validate_python(data)
