from calltrack.models.call_record import CallRecord, CallStatus, TranscriptStatus, utcnow

__all__ = ["CallRecord", "CallStatus", "TranscriptStatus", "utcnow"]
