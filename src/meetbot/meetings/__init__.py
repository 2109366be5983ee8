"""Meeting intelligence -- transcript capture, periodic summaries, catch-up.

Provides the domain schemas and exceptions, per-meeting configuration
(MeetingConfigService backed by ConfigurationRepository), the
MeetingLifecycleController that owns active meetings, and CatchUpService
for late joiners.
"""
