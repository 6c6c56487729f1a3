"""
SOF trading and settlement orchestrator.

Entrypoints stay at the repo root (`main.py` for the resolution job, `api_server.py`
for the HTTP surface); the implementation lives in this package.
"""
