"""
API Package — FastAPI Router • Models • JWT Utils • Turn Streamer • S3
======================================================================

Mission
-------
This package defines the backend's HTTP interface and the collaborators the
chat turn orchestrator talks to: request validation, caller identity, the
streamed model invocation and object storage.

Contents
--------
- fast_api
    FastAPI router with endpoints for:
      • Chat (`POST /chat`): one turn through the orchestrator, streamed as SSE frames
      • Conversations: list, ordered turns, rename, visibility
      • Votes on turns, quota snapshot, health

- models
    Pydantic data contracts: the tagged union of turn parts (text | file | tool),
    the chat request, persisted conversation/turn records and quota snapshots.

- utils
    JWT helpers (python-jose): token creation and verification, resolving the
    caller `Identity` (user id + role) from the cookie or bearer header.

- prompt_utilities
    System prompt from chat preferences, transcript → LangChain messages,
    punctuation stripping and title heuristics.

- llm_pipeline
    `TurnStreamer`: LangChain `ChatOpenAI.astream` with a bounded tool loop and
    a deadline, emitting text/tool events and one terminal event.

- aws_bucket_funcs
    `ObjectStorage` over boto3 S3: existence checks, per-user duplication for
    forks, deletion.
"""
