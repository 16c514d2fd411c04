from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

@dataclass(frozen=True)
class TranscriptEntry:
    time: str
    name: str
    text: str

    def to_dict(self) -> Dict[str, str]:
        return {"Time": self.time, "Name": self.name, "Text": self.text}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranscriptEntry":
        # Raises KeyError/TypeError on malformed blobs; callers decide what that means
        return cls(time=str(data["Time"]), name=str(data["Name"]), text=str(data["Text"]))

@dataclass
class AttendeeReport:
    meeting_start_time: Union[int, float, str, None]
    total_unique_attendees: int
    attendee_list: List[str] = field(default_factory=list)
    current_attendees: List[Dict[str, Any]] = field(default_factory=list)   # each has "name"
    attendee_history: List[Dict[str, Any]] = field(default_factory=list)    # each has "name", "event"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "meetingStartTime": self.meeting_start_time,
            "totalUniqueAttendees": self.total_unique_attendees,
            "attendeeList": list(self.attendee_list),
            "currentAttendees": [dict(a) for a in self.current_attendees],
            "attendeeHistory": [dict(e) for e in self.attendee_history],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AttendeeReport":
        return cls(
            meeting_start_time=data.get("meetingStartTime"),
            total_unique_attendees=int(data.get("totalUniqueAttendees") or 0),
            attendee_list=[str(n) for n in data.get("attendeeList") or []],
            current_attendees=[dict(a) for a in data.get("currentAttendees") or []],
            attendee_history=[dict(e) for e in data.get("attendeeHistory") or []],
        )

@dataclass
class SessionMetadata:
    id: str
    title: str
    timestamp: str  # ISO instant, UTC
    date: str
    time: str
    caption_count: int
    duration: str
    speakers: List[str]
    attendees: List[str]
    attendee_count: int
    preview: str
    chunk_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "timestamp": self.timestamp,
            "date": self.date,
            "time": self.time,
            "captionCount": self.caption_count,
            "duration": self.duration,
            "speakers": list(self.speakers),
            "attendees": list(self.attendees),
            "attendeeCount": self.attendee_count,
            "preview": self.preview,
            "chunkCount": self.chunk_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionMetadata":
        return cls(
            id=data["id"],
            title=data.get("title") or "Untitled Meeting",
            timestamp=data["timestamp"],
            date=data.get("date", ""),
            time=data.get("time", ""),
            caption_count=int(data.get("captionCount", 0)),
            duration=data.get("duration", ""),
            speakers=list(data.get("speakers") or []),
            attendees=list(data.get("attendees") or []),
            attendee_count=int(data.get("attendeeCount", 0)),
            preview=data.get("preview", ""),
            chunk_count=int(data.get("chunkCount", 0)),
        )

@dataclass
class StorageStats:
    used_bytes: int
    quota_bytes: int

    @property
    def used_mb(self) -> float:
        return round(self.used_bytes / 1024 / 1024, 2)

    @property
    def quota_mb(self) -> float:
        return round(self.quota_bytes / 1024 / 1024, 2)

    @property
    def percent_used(self) -> float:
        if not self.quota_bytes:
            return 0.0
        return round(self.used_bytes / self.quota_bytes * 100, 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "usedBytes": self.used_bytes,
            "quotaBytes": self.quota_bytes,
            "usedMB": self.used_mb,
            "quotaMB": self.quota_mb,
            "percentUsed": self.percent_used,
        }

def entries_from_dicts(rows: List[Dict[str, Any]]) -> List[TranscriptEntry]:
    return [TranscriptEntry.from_dict(r) for r in rows]

def report_from_dict(data: Optional[Dict[str, Any]]) -> Optional[AttendeeReport]:
    return AttendeeReport.from_dict(data) if data else None
