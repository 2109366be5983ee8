"""Summary pipeline -- generation, orchestration, storage and access control.

SummaryGenerator calls the LLM, SummarizationOrchestrator runs one pass per
meeting at a time, SummaryStore persists to Redis with an in-memory overflow
queue, and the access helpers restrict reads to meeting participants.
"""
