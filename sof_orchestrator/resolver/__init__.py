"""
Season resolution job.

The entrypoint remains `main.py` at the repo root; the polling loop lives in
`sof_orchestrator/resolver/runner.py` so it can be tested without a ledger.
"""
