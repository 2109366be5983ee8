"""Live transcript ingestion -- segment buffer, VTT parsing, strategies.

TranscriptBuffer holds segments per meeting between summarization passes.
PollingTranscriptionStrategy and WebhookTranscriptionStrategy feed it from
the platform; TranscriptionStrategyFactory picks one per meeting.
"""
