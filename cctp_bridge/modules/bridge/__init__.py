"""Bridge protocol: record schema, state machine, step executors and orchestrator."""
