from datetime import datetime

from pydantic import BaseModel, Field, field_validator, model_validator


CREDIT_ROLES = ("director", "actor", "writer", "producer", "presenter", "guest")


class Credit(BaseModel):
    """A single credited person"""
    role: str = Field(..., description="XMLTV credit role (e.g. 'actor', 'director')")
    name: str = Field(..., min_length=1, description="Person name")

    @field_validator('role')
    @classmethod
    def validate_role(cls, v: str) -> str:
        """Validate role is one the output format knows"""
        normalized = v.strip().lower()
        if normalized not in CREDIT_ROLES:
            raise ValueError(f"Invalid credit role: {v}. Must be one of {', '.join(CREDIT_ROLES)}")
        return normalized


class ChannelDeclaration(BaseModel):
    """Channel declaration emitted ahead of the programmes"""
    channel_id: str = Field(..., min_length=1, description="Stable channel ID used in programme records")
    display_name: str = Field(..., description="Display name of the channel")
    channel_number: int = Field(..., description="Numeric channel number on the listing grid")


class ProgrammeRecord(BaseModel):
    """Programme data model"""
    channel_id: str = Field(..., min_length=1, description="Channel ID this programme airs on")
    programme_id: str | None = Field(None, description="Source programme ID")
    start_time: datetime | None = Field(None, description="Absolute start time with UTC offset")
    stop_time: datetime | None = Field(None, description="Absolute stop time, only when a duration is known")
    title: str = Field(..., description="Programme title")
    description: str | None = None
    credits: list[Credit] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    rating: str | None = None
    air_date: str | None = Field(None, description="Original air date (YYYYMMDD or YYYY)")
    episode: str | None = Field(None, description="Onscreen episode number")

    @model_validator(mode='after')
    def validate_times(self):
        """Validate stop time never precedes start and never appears alone"""
        if self.stop_time is not None:
            if self.start_time is None:
                raise ValueError("stop_time requires start_time")
            if self.stop_time < self.start_time:
                raise ValueError(f"stop_time ({self.stop_time}) must not precede start_time ({self.start_time})")
        return self

    @property
    def sort_key(self) -> tuple[str, datetime]:
        """Channel-grouped, chronological merge key"""
        if self.start_time is None:
            raise ValueError(f"Programme {self.programme_id} on {self.channel_id} has no start time")
        return self.channel_id, self.start_time


class WorkerEntry(BaseModel):
    """One line of a worker output file"""
    channel_id: str
    start_time: datetime
    record: ProgrammeRecord

    @classmethod
    def from_record(cls, record: ProgrammeRecord) -> "WorkerEntry":
        channel_id, start_time = record.sort_key
        return cls(channel_id=channel_id, start_time=start_time, record=record)

    @property
    def sort_key(self) -> tuple[str, datetime]:
        return self.channel_id, self.start_time
