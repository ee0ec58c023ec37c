"""
The `orchestrator` package runs one chat turn end to end.

Contents:
    - errors:
        Error taxonomy shared by the pipeline, the stores and the router.

    - admission:
        Quota checks performed before anything is written.

    - resolver:
        Chooses the conversation a turn belongs to (create, reuse, fork).

    - transcript:
        Validates the inbound turn and merges it into the prior turns.

    - commit:
        Persists NEW and REGENERATE outcomes and charges the quota.

    - pipeline:
        `ChatTurnOrchestrator`, which wires the steps together around the
        streamed model invocation.
"""
