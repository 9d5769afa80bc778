"""Build pipeline sub-package, driven by app/services/build_service.py.

Sub-modules:
    models      - plan, phase, file state and build snapshot types
    parsing     - tolerant JSON extraction from model output
    prompts     - system prompts and message builders per pipeline step
    memory      - per-build record of generated files and their summaries
    file_store  - project file writes/deletes with error reporting
    generation  - retrying, continuation-aware gateway calls
    decisions   - one-shot waits for approval and file-error answers
    events      - per-build event channel with bounded subscribers
    registry    - live runners keyed by build id
    runner      - the build state machine (plan, approve, generate, review)
"""
