"""
Session Timeline Engine Backend

Streams narrated, versioned timelines of remote coding sessions and
persists them as print stacks.

LAYER STRUCTURE:
================

1. CONTRACTS (contracts/)
   - Immutable activity, version and stream event types
   - Error codes and write results shared by every layer

2. INGESTION (ingestion/)
   - Responsibility: Read the remote session and its activity feed
   - Outputs: Activity, SessionMetadata, per-file diff statistics
   - MUST NOT: Narrate or persist

3. TEMPORAL STATE (temporal/)
   - Responsibility: Version caches, print stacks, open stream runs
   - MUST NOT: Perform I/O

4. STREAM (stream/)
   - Responsibility: One viewing run: watermark, enrichment, heartbeat,
     cancellation and teardown
   - Outputs: StreamEvent sequence

5. REGENERATION (regeneration.py)
   - Responsibility: Re-present a timeline under another (tone, model)

6. STORAGE (storage/)
   - Responsibility: Print stack documents and custom tones on disk
   - MUST NOT: Overwrite a complete stack except through merge_versions

7. API (api/)
   - Responsibility: HTTP and SSE surface over the layers above

CONSTRAINTS ENFORCED:
=====================
- Every version mapping is addressed by version_key(tone, model)
- Enrichment failures degrade fields; they never end a stream
- Explicit errors: storage failures are StorageWriteResult values
"""
